"""
Website discovery.

Crawls a site depth-first through a browser driver, staying on the start
origin, and parses every page with BeautifulSoup into the pieces later
phases need: elements with ranked alternate locators, forms, tables, user
flows and clickable interactions.
"""

import hashlib
import logging
import re
from typing import Callable, Dict, List, Optional, Set
from urllib.parse import urldefrag, urljoin, urlparse

from bs4 import BeautifulSoup, Tag

from ..core.healing_utils import format_locator
from ..core.models import (
    DepthLimits,
    ElementInfo,
    FormInfo,
    Interaction,
    PageInfo,
    TableInfo,
    UserFlow,
    WebsiteMap,
)
from .auth_flow import is_login_url
from .browser import BrowserDriver, BrowserError, NavigationError
from .cancellation import CancellationToken
from .dom_analyzer import DOMAnalyzer

logger = logging.getLogger(__name__)

CrawlProgress = Callable[[float, str, Dict], None]

SKIPPED_SCHEMES = ('mailto:', 'tel:', 'javascript:', 'data:')
SKIPPED_EXTENSIONS = (
    '.pdf', '.zip', '.gz', '.tar', '.png', '.jpg', '.jpeg', '.gif', '.svg',
    '.ico', '.css', '.js', '.mp4', '.mp3', '.doc', '.docx', '.xls', '.xlsx',
)
LOGOUT_MARKERS = ('logout', 'log-out', 'signout', 'sign-out', 'logoff')
DESTRUCTIVE_KEYWORDS = ('delete', 'remove', 'destroy', 'deactivate', 'logout', 'log out', 'sign out')
MAX_LINK_ELEMENTS = 50
MAX_TABLE_ROWS = 50

FLOW_NAMES = {
    'login': 'User Login',
    'registration': 'User Registration',
    'search': 'Search',
    'contact': 'Contact Form',
}


def normalize_url(url: str) -> str:
    """Drop the fragment and a trailing slash (except the root path)."""
    url, _ = urldefrag(url)
    parsed = urlparse(url)
    path = parsed.path or '/'
    if len(path) > 1 and path.endswith('/'):
        path = path[:-1]
    normalized = f"{parsed.scheme}://{parsed.netloc}{path}"
    if parsed.query:
        normalized += f"?{parsed.query}"
    return normalized


def object_id_for(page_url: str, locator: str) -> str:
    """Stable identifier for an element across crawls of the same page."""
    path = urlparse(page_url).path or '/'
    return hashlib.sha1(f"{path}|{locator}".encode('utf-8')).hexdigest()[:12]


def is_destructive(text: str) -> bool:
    text = (text or '').lower()
    return any(keyword in text for keyword in DESTRUCTIVE_KEYWORDS)


class PageParser:
    """Turns a page's HTML into a PageInfo."""

    def __init__(self, analyzer: Optional[DOMAnalyzer] = None):
        self.analyzer = analyzer or DOMAnalyzer()

    def parse(self, html: str, url: str, depth: int = 0, status_code: Optional[int] = None,
              title: Optional[str] = None) -> PageInfo:
        soup = self.analyzer.parse(html)
        if title is None:
            title = soup.title.get_text(strip=True) if soup.title else ""

        elements, by_tag = self.extract_elements(soup, url)
        return PageInfo(
            url=url,
            title=title,
            depth=depth,
            status_code=status_code,
            links=self.extract_links(soup, url),
            elements=elements,
            forms=self.extract_forms(soup, url, by_tag),
            tables=self.extract_tables(soup),
            dom_snapshot=html,
        )

    def extract_links(self, soup: BeautifulSoup, page_url: str) -> List[str]:
        """Crawlable same-origin links, normalized and de-duplicated."""
        origin = urlparse(page_url).netloc
        links = []
        seen = set()
        for anchor in soup.find_all('a', href=True):
            href = anchor['href'].strip()
            if not href or href.startswith('#') or href.lower().startswith(SKIPPED_SCHEMES):
                continue
            absolute = normalize_url(urljoin(page_url, href))
            parsed = urlparse(absolute)
            if parsed.scheme not in ('http', 'https') or parsed.netloc != origin:
                continue
            path = parsed.path.lower()
            if path.endswith(SKIPPED_EXTENSIONS) or any(m in path for m in LOGOUT_MARKERS):
                continue
            if absolute not in seen:
                seen.add(absolute)
                links.append(absolute)
        return links

    def _element_type(self, element: Tag) -> Optional[str]:
        tag = element.name
        input_type = (element.get('type') or '').lower()
        if tag == 'button' or element.get('role') == 'button':
            return 'button'
        if tag == 'input':
            if input_type in ('button', 'submit', 'reset'):
                return 'button'
            if input_type == 'hidden':
                return None
            if input_type in ('checkbox', 'radio'):
                return 'checkbox'
            return 'input'
        if tag == 'a' and element.get('href'):
            return 'link'
        if tag in ('select', 'textarea'):
            return tag
        return None

    def extract_elements(self, soup: BeautifulSoup, page_url: str):
        """
        Visible interactive elements with their ranked locators.

        Returns:
            (elements, mapping of id(tag) to ElementInfo) so forms can reuse
            the same ElementInfo objects
        """
        elements: List[ElementInfo] = []
        by_tag: Dict[int, ElementInfo] = {}
        link_count = 0

        for element in soup.find_all(True):
            element_type = self._element_type(element)
            if element_type is None or not self.analyzer.is_visible(element):
                continue
            if element_type == 'link':
                link_count += 1
                if link_count > MAX_LINK_ELEMENTS:
                    continue

            options = self.analyzer.generate_locator_options(element, soup)
            if not options:
                logger.debug(f"No unique locator for <{element.name}> on {page_url}")
                continue
            locator = format_locator(options[0].type, options[0].value)

            attributes = {k: v for k, v in element.attrs.items() if isinstance(v, str)}
            if element.name == 'select':
                attributes['options'] = [
                    option.get('value', option.get_text(strip=True))
                    for option in element.find_all('option')
                ]

            info = ElementInfo(
                tag=element.name,
                element_type=element_type,
                locator=locator,
                page_url=page_url,
                object_id=object_id_for(page_url, locator),
                text=element.get_text(' ', strip=True)[:100] or element.get('value', ''),
                name=element.get('name', ''),
                input_type=(element.get('type') or '').lower(),
                placeholder=element.get('placeholder', ''),
                locators=options,
                attributes=attributes,
            )
            elements.append(info)
            by_tag[id(element)] = info
        return elements, by_tag

    def extract_forms(self, soup: BeautifulSoup, page_url: str,
                      by_tag: Dict[int, ElementInfo]) -> List[FormInfo]:
        forms = []
        for form in soup.find_all('form'):
            if not self.analyzer.is_visible(form):
                continue
            fields = []
            buttons = []
            for control in form.find_all(True):
                info = by_tag.get(id(control))
                if info is None:
                    continue
                if info.element_type == 'button':
                    buttons.append((control, info))
                else:
                    fields.append(info)
            submit = next((info for control, info in buttons
                           if (control.get('type') or 'submit').lower() == 'submit'), None)
            submit_locator = submit.locator if submit else (buttons[0][1].locator if buttons else None)
            if not fields:
                continue

            locator = self.analyzer.unique_locator(form, soup) or self.analyzer.generate_absolute_xpath(form)
            forms.append(FormInfo(
                page_url=page_url,
                locator=locator,
                fields=fields,
                submit_locator=submit_locator,
                action=form.get('action', ''),
                method=(form.get('method') or 'get').lower(),
                kind=self.classify_form(form, fields),
            ))
        return forms

    def classify_form(self, form: Tag, fields: List[ElementInfo]) -> str:
        """Classify a form as login, registration, search, contact or generic."""
        hint = f"{form.get('id', '')} {form.get('action', '')} {' '.join(form.get('class', []))}".lower()
        if re.search(r'register|signup|sign-up', hint):
            return 'registration'
        if re.search(r'login|signin|sign-in', hint):
            return 'login'

        passwords = [f for f in fields if f.input_type == 'password']
        names = ' '.join(f"{f.name} {f.placeholder} {f.attributes.get('id', '')}".lower() for f in fields)
        has_email = any(f.input_type == 'email' for f in fields) or 'email' in names
        has_confirm = any(re.search(r'confirm|repeat|password2|retype', f"{f.name} {f.attributes.get('id', '')}",
                                    re.IGNORECASE) for f in passwords)

        if has_confirm or len(passwords) > 1 or (passwords and has_email and len(fields) >= 3):
            return 'registration'
        if len(passwords) == 1 and len(fields) <= 3:
            return 'login'
        if any(f.input_type == 'search' or f.name.lower() in ('q', 'search', 'query') for f in fields):
            return 'search'
        if any(f.tag == 'textarea' for f in fields) and has_email:
            return 'contact'
        return 'generic'

    def extract_tables(self, soup: BeautifulSoup) -> List[TableInfo]:
        tables = []
        for table in soup.find_all('table'):
            if not self.analyzer.is_visible(table):
                continue
            headers = [th.get_text(' ', strip=True) for th in table.find_all('th')]
            rows = []
            for row in table.find_all('tr'):
                cells = [td.get_text(' ', strip=True) for td in row.find_all('td')]
                if cells:
                    rows.append(cells)
                if len(rows) >= MAX_TABLE_ROWS:
                    break
            locator = self.analyzer.unique_locator(table, soup) or self.analyzer.generate_absolute_xpath(table)
            tables.append(TableInfo(locator=locator, headers=headers, rows=rows))
        return tables


class WebsiteCrawler:
    """Same-origin depth-first crawler."""

    def __init__(self, parser: Optional[PageParser] = None, capture_screenshots: bool = False):
        self.parser = parser or PageParser()
        self.capture_screenshots = capture_screenshots

    async def crawl(self, driver: BrowserDriver, start_url: str, limits: DepthLimits,
                    on_progress: Optional[CrawlProgress] = None,
                    token: Optional[CancellationToken] = None,
                    authenticated: bool = False) -> WebsiteMap:
        """
        Crawl from ``start_url`` within the depth tier limits.

        Pages that fail to load are logged and skipped. When the crawl runs
        in a logged-in session, the pages it reaches are marked as requiring
        authentication.
        """
        start_url = normalize_url(start_url)
        website = WebsiteMap(base_url=f"{urlparse(start_url).scheme}://{urlparse(start_url).netloc}")
        visited: Set[str] = set()

        async def visit(url: str, depth: int) -> None:
            if url in visited or len(visited) >= limits.max_pages or depth > limits.max_link_depth:
                return
            if token is not None:
                token.raise_if_cancelled()
            visited.add(url)

            page = await self._crawl_page(driver, url, depth, limits, authenticated)
            if page is None:
                return
            website.pages.append(page)
            if on_progress:
                on_progress(
                    min(len(visited) / limits.max_pages * 100, 95),
                    f"Crawled {len(visited)}/{limits.max_pages} pages",
                    {"pages_found": len(website.pages), "current_url": url},
                )

            for link in page.links:
                if len(visited) >= limits.max_pages:
                    break
                await visit(link, depth + 1)

        await visit(start_url, 0)

        website.user_flows = self.identify_user_flows(website)
        website.interactions = self.extract_interactions(website, limits.max_interactions_per_page)
        if on_progress:
            on_progress(100, "Crawling completed", {
                "pages_found": len(website.pages),
                "user_flows": len(website.user_flows),
                "interactions": len(website.interactions),
            })
        logger.info(f"Crawled {len(website.pages)} pages from {start_url}")
        return website

    async def _crawl_page(self, driver: BrowserDriver, url: str, depth: int,
                          limits: DepthLimits, authenticated: bool) -> Optional[PageInfo]:
        try:
            status = await driver.navigate(url)
            try:
                await driver.wait_for_load_state("networkidle", timeout_ms=10000)
            except BrowserError:
                logger.debug(f"{url} did not reach network idle, continuing")
            landed = driver.url
            html = await driver.content()
            title = await driver.title()
        except NavigationError as e:
            logger.warning(f"Skipping {url}: {e}")
            return None
        except BrowserError as e:
            logger.warning(f"Could not read {url}: {e}")
            return None

        if is_login_url(landed) and not is_login_url(url):
            logger.info(f"{url} redirected to login, marking as authenticated-only")
            return PageInfo(url=url, title=title, depth=depth, status_code=status, requires_auth=True)

        page = self.parser.parse(html, url, depth=depth, status_code=status, title=title)
        if status is not None and status >= 400:
            page.links = []
        page.requires_auth = authenticated and not is_login_url(url)

        if self.capture_screenshots:
            await self._capture_references(driver, page, limits.max_interactions_per_page)
        return page

    async def _capture_references(self, driver: BrowserDriver, page: PageInfo, limit: int) -> None:
        """Element crops used later as visual healing references."""
        for element in page.elements[:limit]:
            try:
                handle = await driver.find(element.locator, timeout_ms=1000)
                if handle is not None:
                    element.screenshot = await driver.screenshot(handle)
            except BrowserError as e:
                logger.debug(f"No reference screenshot for {element.locator}: {e}")

    def identify_user_flows(self, website: WebsiteMap) -> List[UserFlow]:
        flows = []
        seen = set()
        for page in website.pages:
            for form in page.forms:
                if form.kind not in FLOW_NAMES or (form.kind, page.url) in seen:
                    continue
                seen.add((form.kind, page.url))
                flows.append(UserFlow(
                    name=FLOW_NAMES[form.kind],
                    flow_type=form.kind,
                    page_url=page.url,
                    form=form,
                    description=f"{FLOW_NAMES[form.kind]} on {urlparse(page.url).path or '/'}",
                ))

        checkout = next((p for p in website.pages
                         if re.search(r'checkout|cart', urlparse(p.url).path, re.IGNORECASE)), None)
        if checkout is not None:
            flows.append(UserFlow(
                name="Checkout Flow",
                flow_type="checkout",
                page_url=checkout.url,
                description="Add to cart, view cart and proceed to checkout",
            ))
        return flows

    def extract_interactions(self, website: WebsiteMap, per_page: int) -> List[Interaction]:
        interactions = []
        for page in website.pages:
            count = 0
            for element in page.elements:
                if count >= per_page:
                    break
                if is_destructive(element.text) or is_destructive(element.attributes.get('href', '')):
                    continue
                if element.element_type in ('button', 'link'):
                    action = 'click'
                elif element.element_type in ('input', 'textarea'):
                    action = 'fill'
                elif element.element_type == 'select':
                    action = 'select'
                else:
                    continue
                interactions.append(Interaction(page_url=page.url, element=element, action=action))
                count += 1
        return interactions
