"""Unit tests for the DOM analyzer, similarity scorer and image comparison."""

import pytest
from PIL import Image

from src.testmaster.core.models import LocatorType
from src.testmaster.services.dom_analyzer import DOMAnalyzer
from src.testmaster.services.image_similarity import crop_region, load_image, perceptual_similarity
from src.testmaster.services.similarity_scorer import ElementProperties, SimilarityScorer
from tests.utils.fake_browser import png_bytes


class TestDOMAnalyzer:
    """Test cases for DOMAnalyzer."""

    def setup_method(self):
        """Set up test fixtures."""
        self.analyzer = DOMAnalyzer()

        # Sample DOM for testing
        self.sample_dom = """
        <html>
            <head><title>Test Page</title></head>
            <body>
                <div class="container">
                    <header class="header">
                        <h1>Test Application</h1>
                        <nav class="navigation">
                            <a href="/home">Home</a>
                            <a href="/about">About</a>
                        </nav>
                    </header>
                    <main class="content">
                        <form id="login-form" class="form">
                            <div class="form-group">
                                <label for="username">Username:</label>
                                <input id="username" name="username" type="text" class="form-control" />
                            </div>
                            <div class="form-group">
                                <label for="password">Password:</label>
                                <input id="password" name="password" type="password" class="form-control" />
                            </div>
                            <div class="form-actions">
                                <button id="submit-btn" type="submit" class="btn btn-primary">Login</button>
                                <button id="cancel-btn" type="button" class="btn btn-secondary">Cancel</button>
                                <button data-testid="help" type="button" style="display: none">Help</button>
                            </div>
                        </form>
                    </main>
                </div>
            </body>
        </html>
        """
        self.soup = self.analyzer.parse(self.sample_dom)

    @pytest.mark.parametrize("locator", [
        "id=submit-btn",
        "#submit-btn",
        "css=button.btn-primary",
        "text=Login",
        "//button[@id='submit-btn']",
        "//*[@id='login-form']/div[3]/button[1]",
        "//button[contains(@class, 'btn-primary')]",
        "//button[text()='Login']",
        "role=button[name='Login']",
    ])
    def test_locators_resolve_to_the_submit_button(self, locator):
        element = self.analyzer.find_element(self.soup, locator)

        assert element is not None
        assert element.get('id') == "submit-btn"

    def test_hidden_elements_are_filtered(self):
        assert self.analyzer.find_all(self.soup, "testid=help") == []
        assert len(self.analyzer.find_all(self.soup, "testid=help", visible_only=False)) == 1

    def test_ambiguous_locator_resolves_to_nothing(self):
        assert self.analyzer.find_element(self.soup, "button.btn") is None

    def test_invalid_css_is_not_an_error(self):
        assert self.analyzer.find_all(self.soup, "button[[") == []

    def test_unsupported_xpath_matches_nothing(self):
        assert self.analyzer.find_all(self.soup, "//button/following-sibling::button") == []

    def test_locator_options_are_unique_and_ranked(self):
        button = self.soup.find(id="submit-btn")

        options = self.analyzer.generate_locator_options(button, self.soup)

        assert options[0].type == LocatorType.ID
        assert options[0].value == "submit-btn"
        assert [o.priority for o in options] == sorted(o.priority for o in options)
        for option in options:
            assert self.analyzer.find_all_by(self.soup, option.type, option.value, visible_only=False) == [button]

    def test_unique_locator_prefers_name_when_no_id(self):
        soup = self.analyzer.parse('<form><input name="q" type="search"><input name="page"></form>')

        assert self.analyzer.unique_locator(soup.find("input"), soup) == 'input[name="q"]'

    def test_extract_properties(self):
        props = self.analyzer.extract_properties(self.soup.find(id="submit-btn"))

        assert props.tag == "button"
        assert props.type == "submit"
        assert props.class_name == "btn btn-primary"
        assert props.visible_text == "Login"
        assert props.is_button is True
        assert "Cancel" in props.neighbor_texts
        assert props.relative_xpath == "//*[@id='login-form']/div[3]/button[1]"

    def test_properties_from_css_locator(self):
        props = self.analyzer.properties_from_locator("form > button.btn.primary[name='pay']")

        assert props.tag == "button"
        assert props.class_name == "btn primary"
        assert props.name == "pay"
        assert props.is_button is True

    def test_properties_from_xpath_locator(self):
        props = self.analyzer.properties_from_locator("//a[@href='/cart']")

        assert props.tag == "a"
        assert props.href == "/cart"

    def test_target_properties_missing_in_reference(self):
        assert self.analyzer.extract_target_properties(self.sample_dom, "#gone") is None


class TestSimilarityScorer:

    def setup_method(self):
        self.scorer = SimilarityScorer()
        self.submit = ElementProperties(
            tag="button", id="submit-btn", type="submit", class_name="btn btn-primary",
            visible_text="Login", attributes={"id": "submit-btn", "type": "submit"}, is_button=True,
        )

    def test_identical_elements_score_one(self):
        assert self.scorer.calculate_similarity(self.submit, self.submit) == pytest.approx(1.0)

    def test_renamed_id_still_scores_high(self):
        renamed = ElementProperties(
            tag="button", id="submit-button", type="submit", class_name="btn btn-primary",
            visible_text="Login", attributes={"id": "submit-button", "type": "submit"}, is_button=True,
        )
        link = ElementProperties(tag="a", href="/about", visible_text="About")

        assert self.scorer.calculate_similarity(self.submit, renamed) > 0.85
        assert self.scorer.calculate_similarity(self.submit, link) < 0.6

    def test_sparse_scoring_ignores_unknown_properties(self):
        target = ElementProperties(id="submit-btn")

        assert self.scorer.calculate_similarity(target, self.submit, sparse=True) == pytest.approx(1.0)
        assert self.scorer.calculate_similarity(target, self.submit) < 1.0

    def test_rank_and_best_match(self):
        candidates = [
            ElementProperties(tag="a", visible_text="Home"),
            self.submit,
        ]

        ranked = self.scorer.rank_candidates(self.submit, candidates)
        best = self.scorer.find_best_match(self.submit, candidates, threshold=0.9)

        assert ranked[0][0] is self.submit
        assert best[0] is self.submit

    def test_custom_weights(self):
        scorer = SimilarityScorer(custom_weights={"visible_text": 0.0})

        assert scorer.weights["visible_text"] == 0.0
        assert scorer.weights["id"] == SimilarityScorer.DEFAULT_WEIGHTS["id"]


class TestImageSimilarity:

    def test_same_image_matches(self):
        image = load_image(png_bytes())

        assert perceptual_similarity(image, image) == pytest.approx(1.0)

    def test_different_pattern_scores_lower(self):
        striped = Image.new("L", (32, 32), 0)
        for x in range(0, 32, 2):
            for y in range(32):
                striped.putpixel((x, y), 255)
        flat = load_image(png_bytes(color=(255, 255, 255)))

        assert perceptual_similarity(striped, flat) < 0.6

    def test_crop_clamps_to_bounds(self):
        image = load_image(png_bytes(size=(100, 50)))

        region = crop_region(image, {"x": 90, "y": 40, "width": 50, "height": 50})

        assert region.size == (10, 10)

    def test_crop_accepts_sequences(self):
        image = load_image(png_bytes(size=(100, 50)))

        assert crop_region(image, [0, 0, 20, 10]).size == (20, 10)

    @pytest.mark.parametrize("bbox", [
        {"x": 200, "y": 0, "width": 10, "height": 10},
        [1, 2, 3],
        {"x": 0, "y": 0},
    ])
    def test_bad_boxes(self, bbox):
        image = load_image(png_bytes(size=(100, 50)))

        with pytest.raises((ValueError, KeyError)):
            crop_region(image, bbox)
