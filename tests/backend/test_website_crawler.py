"""
Tests for website discovery against the in-memory shop site.
"""

import pytest

from src.testmaster.core.models import DepthLimits, TestingDepth, DEPTH_LIMITS
from src.testmaster.services.cancellation import CancellationToken, SessionCancelledError
from src.testmaster.services.website_crawler import (
    PageParser,
    WebsiteCrawler,
    normalize_url,
    object_id_for,
)
from tests.utils.fake_browser import BASE_URL, HOME_HTML, FakePage

SHALLOW = DEPTH_LIMITS[TestingDepth.SHALLOW]


class TestUrlHelpers:

    @pytest.mark.parametrize("url, expected", [
        ("http://shop.test/products/#top", "http://shop.test/products"),
        ("http://shop.test", "http://shop.test/"),
        ("http://shop.test/", "http://shop.test/"),
        ("http://shop.test/search?q=a#results", "http://shop.test/search?q=a"),
    ])
    def test_normalize_url(self, url, expected):
        assert normalize_url(url) == expected

    def test_object_id_is_stable_per_path_and_locator(self):
        first = object_id_for("http://shop.test/login", "id=login-btn")

        assert first == object_id_for("http://shop.test/login?next=/", "id=login-btn")
        assert first != object_id_for("http://shop.test/signup", "id=login-btn")
        assert len(first) == 12


class TestCrawl:

    @pytest.mark.asyncio
    async def test_same_origin_pages_are_discovered(self, fake_driver):
        website = await WebsiteCrawler().crawl(fake_driver, BASE_URL, SHALLOW)

        urls = [page.url for page in website.pages]
        assert urls == [
            f"{BASE_URL}/",
            f"{BASE_URL}/products",
            f"{BASE_URL}/contact",
            f"{BASE_URL}/login",
        ]
        assert website.base_url == BASE_URL
        assert not any("logout" in url for url in fake_driver.visited)

    @pytest.mark.asyncio
    async def test_forms_are_classified_into_flows(self, fake_driver):
        website = await WebsiteCrawler().crawl(fake_driver, BASE_URL, SHALLOW)

        login = website.forms_of_kind("login")[0]
        contact = website.forms_of_kind("contact")[0]
        assert [f.name for f in login.fields] == ["username", "password"]
        assert login.submit_locator == "id=login-btn"
        assert contact.method == "post"
        assert {flow.flow_type for flow in website.user_flows} == {"login", "contact"}

    @pytest.mark.asyncio
    async def test_tables_are_extracted(self, fake_driver):
        website = await WebsiteCrawler().crawl(fake_driver, BASE_URL, SHALLOW)

        table = website.page(f"{BASE_URL}/products").tables[0]
        assert table.locator == "id=products"
        assert table.headers == ["Name", "Price", "Actions"]
        assert table.rows == [["Widget", "9.99", "View"], ["Gadget", "19.99", "View"]]

    @pytest.mark.asyncio
    async def test_destructive_elements_are_not_interactions(self, fake_driver):
        website = await WebsiteCrawler().crawl(fake_driver, BASE_URL, SHALLOW)

        texts = [i.element.text for i in website.interactions]
        assert "Subscribe" in texts
        assert "Logout" not in texts

    @pytest.mark.asyncio
    async def test_login_redirect_marks_page_as_requiring_auth(self, fake_driver):
        website = await WebsiteCrawler().crawl(fake_driver, f"{BASE_URL}/dashboard", SHALLOW)

        page = website.pages[0]
        assert page.url == f"{BASE_URL}/dashboard"
        assert page.requires_auth is True
        assert page.elements == []

    @pytest.mark.asyncio
    async def test_max_pages_is_honoured(self, fake_driver):
        limits = DepthLimits(max_pages=2, max_link_depth=2, max_interactions_per_page=10)

        website = await WebsiteCrawler().crawl(fake_driver, BASE_URL, limits)

        assert len(website.pages) == 2

    @pytest.mark.asyncio
    async def test_link_depth_is_honoured(self, fake_driver):
        limits = DepthLimits(max_pages=10, max_link_depth=0, max_interactions_per_page=10)

        website = await WebsiteCrawler().crawl(fake_driver, BASE_URL, limits)

        assert [page.url for page in website.pages] == [f"{BASE_URL}/"]

    @pytest.mark.asyncio
    async def test_broken_link_is_skipped(self, site_pages, fake_driver):
        site_pages[f"{BASE_URL}/"] = FakePage(
            HOME_HTML.replace("<h1>", '<a href="/missing">Old page</a><h1>')
        )

        website = await WebsiteCrawler().crawl(fake_driver, BASE_URL, SHALLOW)

        assert len(website.pages) == 4
        assert website.page(f"{BASE_URL}/missing") is None

    @pytest.mark.asyncio
    async def test_error_page_links_are_not_followed(self, site_pages, fake_driver):
        site_pages[f"{BASE_URL}/products"].status = 500

        website = await WebsiteCrawler().crawl(fake_driver, BASE_URL, SHALLOW)

        products = website.page(f"{BASE_URL}/products")
        assert products.status_code == 500
        assert products.links == []

    @pytest.mark.asyncio
    async def test_progress_is_monotonic_and_completes(self, fake_driver):
        updates = []

        await WebsiteCrawler().crawl(
            fake_driver, BASE_URL, SHALLOW,
            on_progress=lambda progress, message, details: updates.append((progress, message, details)),
        )

        values = [u[0] for u in updates]
        assert values == sorted(values)
        assert values[-1] == 100
        assert updates[-1][2]["pages_found"] == 4

    @pytest.mark.asyncio
    async def test_cancelled_crawl_stops(self, fake_driver):
        token = CancellationToken()
        token.cancel()

        with pytest.raises(SessionCancelledError):
            await WebsiteCrawler().crawl(fake_driver, BASE_URL, SHALLOW, token=token)
        assert fake_driver.visited == []

    @pytest.mark.asyncio
    async def test_reference_screenshots(self, fake_driver):
        website = await WebsiteCrawler(capture_screenshots=True).crawl(fake_driver, BASE_URL, SHALLOW)

        subscribe = next(e for e in website.pages[0].elements if e.text == "Subscribe")
        assert subscribe.locator == "id=subscribe-btn"
        assert subscribe.screenshot is not None

    @pytest.mark.asyncio
    async def test_authenticated_crawl_marks_pages(self, fake_driver):
        website = await WebsiteCrawler().crawl(fake_driver, BASE_URL, SHALLOW, authenticated=True)

        assert website.page(f"{BASE_URL}/products").requires_auth is True
        assert website.page(f"{BASE_URL}/login").requires_auth is False


class TestPageParser:

    def setup_method(self):
        self.parser = PageParser()

    def test_registration_form_is_recognized(self):
        html = """
        <html><body><form id="account">
          <input type="text" name="full_name">
          <input type="email" name="email">
          <input type="password" name="password">
          <input type="password" name="confirm_password">
          <button type="submit">Create account</button>
        </form></body></html>
        """

        page = self.parser.parse(html, f"{BASE_URL}/join")

        assert page.forms[0].kind == "registration"
        assert page.forms[0].submit_locator is not None

    def test_search_form_is_recognized(self):
        html = '<html><body><form><input type="search" name="q"><button>Go</button></form></body></html>'

        page = self.parser.parse(html, f"{BASE_URL}/")

        assert page.forms[0].kind == "search"

    def test_hidden_inputs_are_ignored(self):
        html = """
        <html><body><form id="f">
          <input type="hidden" name="csrf" value="x">
          <input type="text" name="city">
        </form></body></html>
        """

        page = self.parser.parse(html, f"{BASE_URL}/")

        assert [e.name for e in page.elements] == ["city"]

    def test_select_options_are_kept(self):
        html = """
        <html><body><select name="size">
          <option value="s">Small</option><option value="m">Medium</option>
        </select></body></html>
        """

        page = self.parser.parse(html, f"{BASE_URL}/")

        assert page.elements[0].element_type == "select"
        assert page.elements[0].attributes["options"] == ["s", "m"]
