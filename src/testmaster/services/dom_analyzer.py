"""
DOM analysis utilities for element fingerprinting.

Works on serialized DOM snapshots with BeautifulSoup:

- resolves locator strings against a snapshot (CSS, a practical XPath
  subset, text, role, test id, aria-label)
- extracts ElementProperties for similarity scoring
- derives a sparse signature from a bare locator string
- generates ranked, unique alternative locators for an element
"""

import re
import logging
from typing import Dict, List, Optional, Tuple

from bs4 import BeautifulSoup, Tag
from soupsieve import SelectorSyntaxError

from ..core.healing_utils import format_locator, parse_locator
from ..core.models import LocatorOption, LocatorType
from .similarity_scorer import ElementProperties

logger = logging.getLogger(__name__)


INTERACTIVE_TAGS = ['a', 'button', 'input', 'select', 'textarea']
TEXT_TAGS = ['label', 'h1', 'h2', 'h3', 'h4', 'h5', 'h6', 'span', 'p', 'li', 'td', 'th']

_IMPLICIT_ROLES = {
    'button': 'button',
    'select': 'combobox',
    'textarea': 'textbox',
    'h1': 'heading', 'h2': 'heading', 'h3': 'heading',
    'h4': 'heading', 'h5': 'heading', 'h6': 'heading',
    'nav': 'navigation',
    'table': 'table',
    'form': 'form',
}

_INPUT_ROLES = {
    'checkbox': 'checkbox',
    'radio': 'radio',
    'submit': 'button',
    'button': 'button',
    'reset': 'button',
    'search': 'searchbox',
}

_QUOTED = r'''["']([^"']*)["']'''


class DOMAnalyzer:
    """Locator resolution and element fingerprinting over DOM snapshots."""

    def parse(self, dom_content: str) -> BeautifulSoup:
        return BeautifulSoup(dom_content or "", 'html.parser')

    # =================== LOCATOR RESOLUTION ===================

    def find_all(self, soup: BeautifulSoup, locator: str, visible_only: bool = True) -> List[Tag]:
        """All elements a locator string addresses in the snapshot."""
        locator_type, value = parse_locator(locator)
        return self.find_all_by(soup, locator_type, value, visible_only)

    def find_all_by(self, soup: BeautifulSoup, locator_type: LocatorType, value: str,
                    visible_only: bool = True) -> List[Tag]:
        if locator_type == LocatorType.ID:
            matches = soup.find_all(attrs={'id': value})
        elif locator_type == LocatorType.TEST_ID:
            matches = soup.find_all(attrs={'data-testid': value})
        elif locator_type == LocatorType.ARIA_LABEL:
            matches = soup.find_all(attrs={'aria-label': value})
        elif locator_type == LocatorType.TEXT:
            matches = self._find_by_text(soup, value)
        elif locator_type == LocatorType.ROLE:
            matches = self._find_by_role(soup, value)
        elif locator_type == LocatorType.XPATH:
            matches = self._find_by_xpath(soup, value)
        else:
            try:
                matches = soup.select(value)
            except (SelectorSyntaxError, NotImplementedError) as e:
                logger.debug(f"Unsupported CSS selector '{value}': {e}")
                matches = []

        if visible_only:
            matches = [m for m in matches if self.is_visible(m)]
        return matches

    def find_element(self, soup: BeautifulSoup, locator: str) -> Optional[Tag]:
        """The element a locator addresses, or None unless exactly one matches."""
        matches = self.find_all(soup, locator, visible_only=False)
        return matches[0] if len(matches) == 1 else None

    def is_visible(self, element: Tag) -> bool:
        """Static visibility: no hidden attribute, hidden input or display:none up the tree."""
        current = element
        while current is not None and isinstance(current, Tag):
            if current.has_attr('hidden'):
                return False
            if current.name == 'input' and (current.get('type') or '').lower() == 'hidden':
                return False
            style = (current.get('style') or '').replace(' ', '').lower()
            if 'display:none' in style or 'visibility:hidden' in style:
                return False
            current = current.parent
        return True

    def _find_by_text(self, soup: BeautifulSoup, text: str) -> List[Tag]:
        """Innermost elements whose whole text equals the value."""
        matches = []
        for element in soup.find_all(True):
            if element.name in ('html', 'body', 'head', 'script', 'style'):
                continue
            if element.get_text(strip=True) != text:
                continue
            if any(child.get_text(strip=True) == text for child in element.find_all(True)):
                continue
            matches.append(element)
        return matches

    def _find_by_role(self, soup: BeautifulSoup, value: str) -> List[Tag]:
        match = re.match(r'^([\w-]+)(?:\[name=' + _QUOTED + r'\])?$', value.strip())
        if not match:
            return []
        role, name = match.group(1), match.group(2)

        matches = []
        for element in soup.find_all(True):
            if self.element_role(element) != role:
                continue
            if name is not None and name not in (
                    element.get('aria-label', ''), element.get_text(strip=True), element.get('value', '')):
                continue
            matches.append(element)
        return matches

    def element_role(self, element: Tag) -> str:
        """Explicit ARIA role or the implicit role of the tag."""
        if element.get('role'):
            return element['role']
        if element.name == 'a' and element.has_attr('href'):
            return 'link'
        if element.name == 'input':
            return _INPUT_ROLES.get((element.get('type') or 'text').lower(), 'textbox')
        return _IMPLICIT_ROLES.get(element.name, '')

    def _find_by_xpath(self, soup: BeautifulSoup, xpath: str) -> List[Tag]:
        """Resolve the XPath forms generated by this module and common hand-written ones.

        Supported:
            //*[@id='x'] optionally followed by a child path
            //tag[predicate] and //*[predicate]
            /html/body/div[2]/button absolute paths
        """
        xpath = xpath.strip()

        match = re.match(r'^//\*\[@id=' + _QUOTED + r'\](/.*)?$', xpath)
        if match:
            root = soup.find(attrs={'id': match.group(1)})
            if root is None:
                return []
            return self._walk(root, match.group(2)) if match.group(2) else [root]

        match = re.match(r'^//([\w-]+|\*)(?:\[(.+)\])?$', xpath)
        if match:
            tag, predicate = match.group(1), match.group(2)
            candidates = soup.find_all(True if tag == '*' else tag)
            if predicate:
                candidates = [c for c in candidates if self._matches_predicate(c, predicate)]
            return candidates

        if xpath.startswith('/') and not xpath.startswith('//'):
            return self._walk(soup, xpath)

        logger.debug(f"Unsupported XPath expression: {xpath}")
        return []

    def _walk(self, root: Tag, path: str) -> List[Tag]:
        current_elements = [root]
        for part in path.strip('/').split('/'):
            next_elements = []
            index_match = re.match(r'^([\w-]+)\[(\d+)\]$', part)
            for element in current_elements:
                if index_match:
                    children = element.find_all(index_match.group(1), recursive=False)
                    index = int(index_match.group(2)) - 1
                    if 0 <= index < len(children):
                        next_elements.append(children[index])
                else:
                    next_elements.extend(element.find_all(part, recursive=False))
            current_elements = next_elements
            if not current_elements:
                break
        return current_elements

    def _matches_predicate(self, element: Tag, predicate: str) -> bool:
        predicate = predicate.strip()

        match = re.match(r'^@([\w-]+)=' + _QUOTED + r'$', predicate)
        if match:
            return self._attribute_text(element, match.group(1)) == match.group(2)

        match = re.match(r'^contains\(@([\w-]+),\s*' + _QUOTED + r'\)$', predicate)
        if match:
            return match.group(2) in self._attribute_text(element, match.group(1))

        match = re.match(r'^(?:text\(\)|normalize-space\(\)|\.)=' + _QUOTED + r'$', predicate)
        if match:
            return element.get_text(strip=True) == match.group(1)

        match = re.match(r'^contains\((?:text\(\)|\.),\s*' + _QUOTED + r'\)$', predicate)
        if match:
            return match.group(1) in element.get_text(strip=True)

        return False

    @staticmethod
    def _attribute_text(element: Tag, name: str) -> str:
        value = element.get(name, '')
        return ' '.join(value) if isinstance(value, list) else str(value)

    # =================== ELEMENT FINGERPRINTING ===================

    def extract_properties(self, element: Tag) -> ElementProperties:
        """Extract ElementProperties from a BeautifulSoup element."""
        return ElementProperties(
            tag=element.name or "",
            id=element.get('id', ""),
            name=element.get('name', ""),
            type=element.get('type', ""),
            aria_label=element.get('aria-label', ""),
            test_id=element.get('data-testid', "") or element.get('data-test', ""),
            class_name=' '.join(element.get('class', [])),
            href=element.get('href', ""),
            alt=element.get('alt', ""),
            role=element.get('role', ""),
            placeholder=element.get('placeholder', ""),
            relative_xpath=self.generate_relative_xpath(element),
            visible_text=element.get_text(strip=True)[:200],
            neighbor_texts=self._extract_neighbor_texts(element),
            attributes={
                key: self._attribute_text(element, key)
                for key in element.attrs if key != 'style'
            },
            is_button=self._is_button_element(element),
        )

    def extract_target_properties(self, dom_content: str, locator: str) -> Optional[ElementProperties]:
        """Properties of the element a locator addressed in an earlier snapshot."""
        element = self.find_element(self.parse(dom_content), locator)
        if element is None:
            logger.debug(f"Locator {locator} does not resolve in reference snapshot")
            return None
        return self.extract_properties(element)

    def properties_from_locator(self, locator: str) -> ElementProperties:
        """
        Derive a sparse signature from a locator string alone.

        Only the properties the locator names are filled in; score the
        result with ``sparse=True``.
        """
        locator_type, value = parse_locator(locator)
        props = ElementProperties()

        if locator_type == LocatorType.ID:
            props.id = value
        elif locator_type == LocatorType.TEST_ID:
            props.test_id = value
        elif locator_type == LocatorType.ARIA_LABEL:
            props.aria_label = value
        elif locator_type == LocatorType.TEXT:
            props.visible_text = value
        elif locator_type == LocatorType.ROLE:
            match = re.match(r'^([\w-]+)(?:\[name=' + _QUOTED + r'\])?$', value)
            if match:
                props.role = match.group(1)
                props.visible_text = match.group(2) or ""
        elif locator_type == LocatorType.XPATH:
            self._signature_from_xpath(value, props)
        else:
            self._signature_from_css(value, props)

        props.is_button = props.tag == 'button' or props.type in ('submit', 'button')
        return props

    def _signature_from_css(self, selector: str, props: ElementProperties) -> None:
        # Only the rightmost compound selector describes the target itself
        compound = re.split(r'\s*[\s>+~]\s*', selector.strip())[-1]

        tag = re.match(r'^([a-zA-Z][\w-]*)', compound)
        if tag:
            props.tag = tag.group(1).lower()
        id_match = re.search(r'#([\w-]+)', compound)
        if id_match:
            props.id = id_match.group(1)
        classes = re.findall(r'\.([\w-]+)', compound)
        if classes:
            props.class_name = ' '.join(classes)

        for name, value in re.findall(r'\[([\w-]+)(?:[*^$~|]?=["\']?([^"\'\]]*)["\']?)?\]', compound):
            self._assign_attribute(props, name, value)

    def _signature_from_xpath(self, xpath: str, props: ElementProperties) -> None:
        tag = re.search(r'/([a-zA-Z][\w-]*)(?:\[[^\]]*\])?\s*$', xpath)
        if tag:
            props.tag = tag.group(1).lower()
        for name, value in re.findall(r'@([\w-]+)=' + _QUOTED, xpath):
            self._assign_attribute(props, name, value)
        for name, value in re.findall(r'contains\(@([\w-]+),\s*' + _QUOTED + r'\)', xpath):
            self._assign_attribute(props, name, value)
        text = re.search(r'(?:text\(\)|normalize-space\(\)|\.)\s*,?\s*=?\s*' + _QUOTED, xpath)
        if text:
            props.visible_text = text.group(1)

    @staticmethod
    def _assign_attribute(props: ElementProperties, name: str, value: str) -> None:
        if not value:
            return
        if name == 'id':
            props.id = value
        elif name == 'class':
            props.class_name = value
        elif name == 'name':
            props.name = value
        elif name in ('data-testid', 'data-test'):
            props.test_id = value
        elif name == 'aria-label':
            props.aria_label = value
        elif name in ('type', 'placeholder', 'href', 'role', 'alt'):
            setattr(props, name, value)
        else:
            props.attributes[name] = value

    def candidate_elements(self, soup: BeautifulSoup, max_candidates: int = 500) -> List[Tag]:
        """Visible interactive and short text-bearing elements, in document order."""
        candidates = []
        for element in soup.find_all(True):
            if len(candidates) >= max_candidates:
                break
            if self.is_interactive(element):
                pass
            elif element.name in TEXT_TAGS:
                text = element.get_text(strip=True)
                if not text or len(text) > 80:
                    continue
            else:
                continue
            if self.is_visible(element):
                candidates.append(element)
        return candidates

    def is_interactive(self, element: Tag) -> bool:
        if element.name in INTERACTIVE_TAGS:
            return True
        return bool(element.get('onclick') or element.get('role') in ('button', 'link', 'tab', 'menuitem'))

    # =================== LOCATOR GENERATION ===================

    def generate_locator_options(self, element: Tag, soup: BeautifulSoup) -> List[LocatorOption]:
        """
        Ranked alternative locators that each resolve uniquely to the element.

        Priority hierarchy: test id, id, name, aria-label, data attribute,
        text, classes, relative XPath, absolute XPath.
        """
        candidates: List[Tuple[LocatorType, str, int]] = []
        tag = element.name

        test_id = element.get('data-testid')
        if test_id:
            candidates.append((LocatorType.TEST_ID, test_id, 1))
        if element.get('id'):
            candidates.append((LocatorType.ID, element['id'], 2))
        if element.get('name'):
            candidates.append((LocatorType.CSS, f'{tag}[name="{element["name"]}"]', 3))
        if element.get('aria-label'):
            candidates.append((LocatorType.ARIA_LABEL, element['aria-label'], 4))
        for attr, value in element.attrs.items():
            if attr.startswith('data-') and attr != 'data-testid' and isinstance(value, str) and value:
                candidates.append((LocatorType.CSS, f'{tag}[{attr}="{value}"]', 5))
                break

        text = element.get_text(strip=True)
        if text and len(text) < 50 and self.is_interactive(element):
            candidates.append((LocatorType.TEXT, text, 6))

        classes = [c for c in element.get('class', []) if re.match(r'^[A-Za-z_-][\w-]*$', c)]
        if classes:
            candidates.append((LocatorType.CSS, f'{tag}.' + '.'.join(classes), 7))

        relative = self.generate_relative_xpath(element)
        if relative and relative != f'//{tag}':
            candidates.append((LocatorType.XPATH, relative, 8))
        absolute = self.generate_absolute_xpath(element)
        if absolute:
            candidates.append((LocatorType.XPATH, absolute, 9))

        options = []
        seen = set()
        for locator_type, value, priority in candidates:
            if (locator_type, value) in seen:
                continue
            seen.add((locator_type, value))
            matches = self.find_all_by(soup, locator_type, value, visible_only=False)
            if len(matches) == 1 and matches[0] is element:
                options.append(LocatorOption(type=locator_type, value=value, priority=priority))
        return options

    def unique_locator(self, element: Tag, soup: BeautifulSoup) -> Optional[str]:
        """Best unique locator string for an element, or None."""
        options = self.generate_locator_options(element, soup)
        if not options:
            return None
        return format_locator(options[0].type, options[0].value)

    def generate_absolute_xpath(self, element: Tag) -> str:
        """Generate absolute XPath for an element."""
        path_parts = []
        current = element

        while current is not None and current.name and current.name != '[document]':
            parent = current.parent
            siblings = parent.find_all(current.name, recursive=False) if parent is not None else [current]
            if len(siblings) == 1:
                path_parts.append(current.name)
            else:
                path_parts.append(f"{current.name}[{siblings.index(current) + 1}]")
            current = parent

        path_parts.reverse()
        return '/' + '/'.join(path_parts) if path_parts else ""

    def generate_relative_xpath(self, element: Tag) -> str:
        """Generate a relative XPath anchored at the nearest ancestor with an id."""
        current = element.parent
        while current is not None and current.name not in (None, '[document]', 'html'):
            if current.get('id'):
                sub_path = []
                temp = element
                while temp is not current:
                    siblings = temp.parent.find_all(temp.name, recursive=False)
                    if len(siblings) == 1:
                        sub_path.append(temp.name)
                    else:
                        sub_path.append(f"{temp.name}[{siblings.index(temp) + 1}]")
                    temp = temp.parent
                sub_path.reverse()
                return f"//*[@id='{current['id']}']/" + '/'.join(sub_path)
            current = current.parent

        return f"//{element.name}"

    def _extract_neighbor_texts(self, element: Tag, max_neighbors: int = 5) -> List[str]:
        """Visible text of sibling elements."""
        neighbors = []
        if element.parent is None:
            return neighbors

        for sibling in element.parent.find_all(True, recursive=False):
            if sibling is element:
                continue
            text = sibling.get_text(strip=True)
            if text and len(text) < 100:
                neighbors.append(text)
            if len(neighbors) >= max_neighbors:
                break
        return neighbors

    def _is_button_element(self, element: Tag) -> bool:
        """Determine if element is functionally a button."""
        if element.name == 'button':
            return True
        if element.name == 'input' and element.get('type') in ['button', 'submit', 'reset']:
            return True
        classes = element.get('class', [])
        if element.name == 'a' and ('btn' in classes or 'button' in classes):
            return True
        return element.get('role') == 'button'

    def describe(self, element: Tag) -> Dict[str, str]:
        """Short human-readable description used in healing metadata."""
        return {
            "tag": element.name or "",
            "id": element.get('id', ""),
            "text": element.get_text(strip=True)[:50],
        }
