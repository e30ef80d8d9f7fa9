"""
API discovery.

Looks for an OpenAPI/Swagger document at the usual locations, parses it
into endpoints, adds common REST resources that answer on the base URL,
and works out the authentication scheme.
"""

import asyncio
import json
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import requests
import yaml

from ..core.models import APIEndpoint, APIMap
from .cancellation import CancellationToken

logger = logging.getLogger(__name__)

ApiProgress = Callable[[float, str, Dict], None]

SPEC_PATHS = (
    "/swagger.json",
    "/openapi.json",
    "/api-docs",
    "/api/docs",
    "/v1/swagger.json",
    "/api/swagger.json",
    "/swagger/v1/swagger.json",
    "/openapi.yaml",
)
HTTP_METHODS = ("get", "post", "put", "patch", "delete")
COMMON_RESOURCES = ("users", "products", "orders", "posts", "items")
AUTH_PROBES = (
    ("POST", "/api/auth/login", {"email": "string", "password": "string"}),
    ("POST", "/api/auth/register", {"email": "string", "password": "string"}),
)
REQUEST_TIMEOUT = 10


class APICrawler:
    """Discovers the endpoints of an HTTP API."""

    def __init__(self, session: Optional[requests.Session] = None, timeout: int = REQUEST_TIMEOUT):
        self.session = session or requests.Session()
        self.timeout = timeout

    async def _get(self, url: str) -> Optional[requests.Response]:
        """GET in a worker thread; network errors read as no response."""
        try:
            return await asyncio.to_thread(self.session.get, url, timeout=self.timeout)
        except requests.RequestException as e:
            logger.debug(f"GET {url} failed: {e}")
            return None

    async def discover(self, api_url: str, on_progress: Optional[ApiProgress] = None,
                       token: Optional[CancellationToken] = None) -> APIMap:
        base_url = api_url.rstrip('/')
        api_map = APIMap(base_url=base_url)

        def report(progress: float, message: str) -> None:
            if on_progress:
                on_progress(progress, message, {"endpoints_found": len(api_map.endpoints)})

        report(0, f"Looking for an API description at {base_url}")
        spec, spec_url = await self.find_spec(base_url, token)
        endpoints: List[APIEndpoint] = []
        if spec is not None:
            api_map.spec_url = spec_url
            endpoints.extend(self.parse_spec(spec, base_url))
            api_map.auth_type = self.detect_auth_type(spec)
            report(50, f"Parsed {len(endpoints)} endpoints from {spec_url}")

        if token is not None:
            token.raise_if_cancelled()
        endpoints.extend(await self.probe_common_endpoints(base_url))

        api_map.endpoints = self.deduplicate(endpoints)
        if api_map.auth_type == "none" and any('/auth/' in e.path or 'login' in e.path for e in api_map.endpoints):
            api_map.auth_type = "bearer"

        report(100, "API discovery completed")
        logger.info(f"Discovered {len(api_map.endpoints)} endpoints at {base_url} (auth: {api_map.auth_type})")
        return api_map

    async def find_spec(self, base_url: str, token: Optional[CancellationToken] = None
                        ) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
        """First parseable OpenAPI/Swagger document among the known locations."""
        for path in SPEC_PATHS:
            if token is not None:
                token.raise_if_cancelled()
            url = f"{base_url}{path}"
            response = await self._get(url)
            if response is None or not response.ok:
                continue
            spec = self.load_spec(response.text, response.headers.get('content-type', ''))
            if spec is not None:
                return spec, url
        return None, None

    @staticmethod
    def load_spec(body: str, content_type: str = "") -> Optional[Dict[str, Any]]:
        """Parse a JSON or YAML API description; None if it is not one."""
        document = None
        try:
            document = json.loads(body)
        except ValueError:
            if 'html' not in content_type:
                try:
                    document = yaml.safe_load(body)
                except yaml.YAMLError:
                    document = None
        if isinstance(document, dict) and isinstance(document.get('paths'), dict) and (
                'openapi' in document or 'swagger' in document):
            return document
        return None

    def parse_spec(self, spec: Dict[str, Any], base_url: str) -> List[APIEndpoint]:
        """Endpoints of an OpenAPI 3 or Swagger 2 document."""
        is_swagger2 = str(spec.get('swagger', '')).startswith('2')
        base_path = (spec.get('basePath') or '').rstrip('/') if is_swagger2 else ''
        global_security = bool(spec.get('security'))
        source = 'swagger' if is_swagger2 else 'openapi'

        endpoints = []
        for path, item in spec['paths'].items():
            if not isinstance(item, dict):
                continue
            shared_params = item.get('parameters', [])
            for method, operation in item.items():
                if method.lower() not in HTTP_METHODS or not isinstance(operation, dict):
                    continue
                parameters = shared_params + operation.get('parameters', [])
                if is_swagger2:
                    body = next((p.get('schema') for p in parameters if p.get('in') == 'body'), None)
                    parameters = [p for p in parameters if p.get('in') != 'body']
                else:
                    content = (operation.get('requestBody') or {}).get('content', {})
                    body = (content.get('application/json') or {}).get('schema')

                security = operation.get('security')
                full_path = f"{base_path}{path}"
                endpoints.append(APIEndpoint(
                    method=method.upper(),
                    path=full_path,
                    url=f"{base_url}{full_path}",
                    summary=operation.get('summary') or operation.get('operationId') or '',
                    parameters=parameters,
                    request_body=body,
                    requires_auth=bool(security) if security is not None else global_security,
                    source=source,
                ))
        return endpoints

    async def probe_common_endpoints(self, base_url: str) -> List[APIEndpoint]:
        """Common REST resources and auth routes that exist on the server."""
        endpoints = []
        for resource in COMMON_RESOURCES:
            path = f"/api/{resource}"
            response = await self._get(f"{base_url}{path}")
            if response is None or response.status_code == 404:
                continue
            requires_auth = response.status_code in (401, 403)
            for method, endpoint_path, body in (
                ("GET", path, None),
                ("GET", f"{path}/{{id}}", None),
                ("POST", path, {"type": "object"}),
                ("PUT", f"{path}/{{id}}", {"type": "object"}),
                ("DELETE", f"{path}/{{id}}", None),
            ):
                endpoints.append(APIEndpoint(
                    method=method, path=endpoint_path, url=f"{base_url}{endpoint_path}",
                    request_body=body, requires_auth=requires_auth,
                ))

        for method, path, body in AUTH_PROBES:
            response = await self._get(f"{base_url}{path}")
            if response is not None and response.status_code != 404:
                endpoints.append(APIEndpoint(method=method, path=path, url=f"{base_url}{path}", request_body=body))
        return endpoints

    @staticmethod
    def deduplicate(endpoints: Iterable[APIEndpoint]) -> List[APIEndpoint]:
        """One endpoint per (method, path); later duplicates only fill missing bodies."""
        unique: Dict[Tuple[str, str], APIEndpoint] = {}
        for endpoint in endpoints:
            key = (endpoint.method, endpoint.path)
            existing = unique.get(key)
            if existing is None:
                unique[key] = endpoint
            elif existing.request_body is None and endpoint.request_body is not None:
                existing.request_body = endpoint.request_body
        return list(unique.values())

    @staticmethod
    def detect_auth_type(spec: Dict[str, Any]) -> str:
        """bearer, basic, apiKey, oauth2 or none, from the security schemes."""
        schemes = (spec.get('components') or {}).get('securitySchemes') or spec.get('securityDefinitions') or {}
        for scheme in schemes.values():
            if not isinstance(scheme, dict):
                continue
            scheme_type = scheme.get('type', '')
            if scheme_type == 'http':
                return 'basic' if scheme.get('scheme', '').lower() == 'basic' else 'bearer'
            if scheme_type == 'basic':
                return 'basic'
            if scheme_type == 'apiKey':
                return 'apiKey'
            if scheme_type in ('oauth2', 'openIdConnect'):
                return 'oauth2'
        return 'none'
