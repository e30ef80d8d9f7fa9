"""
Similarity Scoring for Element Matching

Weighted multi-property element re-identification in the style of Similo:
each property is compared with the similarity function best suited to how
it drifts between releases, and the weighted sum is normalized to [0, 1].

Two scoring modes are supported:

- full: every weighted property counts, so two empty values agree
- sparse: properties that are empty on the target are ignored, used when
  the target is only known from a locator string and most of its
  properties are unknown
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass
class ElementProperties:
    """Element properties used for similarity scoring."""
    # Core identifiers
    tag: str = ""
    id: str = ""
    name: str = ""
    type: str = ""
    aria_label: str = ""
    test_id: str = ""

    # Attribute-based
    class_name: str = ""
    href: str = ""
    alt: str = ""
    role: str = ""
    placeholder: str = ""

    # Structural
    relative_xpath: str = ""

    # Content and context
    visible_text: str = ""
    neighbor_texts: List[str] = field(default_factory=list)
    attributes: Dict[str, str] = field(default_factory=dict)

    is_button: bool = False


class SimilarityScorer:
    """
    Weighted similarity scorer over ElementProperties.

    Weights reflect how stable each property tends to be across versions
    of the same page; identifiers and accessible labels weigh most.
    """

    DEFAULT_WEIGHTS = {
        'tag': 0.80,
        'id': 2.70,
        'name': 2.90,
        'type': 1.10,
        'aria_label': 2.95,
        'test_id': 2.70,
        'class_name': 1.00,
        'href': 0.30,
        'alt': 1.95,
        'role': 1.20,
        'placeholder': 1.50,
        'relative_xpath': 0.50,
        'visible_text': 2.95,
        'neighbor_texts': 1.00,
        'attributes': 2.20,
        'is_button': 2.85,
    }

    def __init__(self, custom_weights: Optional[Dict[str, float]] = None):
        """
        Initialize the similarity scorer.

        Args:
            custom_weights: Optional dictionary to override default weights
        """
        self.weights = self.DEFAULT_WEIGHTS.copy()
        if custom_weights:
            self.weights.update(custom_weights)

        self._levenshtein_cache: Dict[Tuple[str, str], int] = {}
        self._functions: Dict[str, Callable] = {
            'tag': self._equality_similarity,
            'id': self._levenshtein_similarity,
            'name': self._equality_similarity,
            'type': self._equality_similarity,
            'aria_label': self._equality_similarity,
            'test_id': self._equality_similarity,
            'class_name': self._set_similarity,
            'href': self._levenshtein_similarity,
            'alt': self._levenshtein_similarity,
            'role': self._equality_similarity,
            'placeholder': self._jaro_winkler_similarity,
            'relative_xpath': self._levenshtein_similarity,
            'visible_text': self._levenshtein_similarity,
            'neighbor_texts': self._list_set_similarity,
            'attributes': self._intersect_value_similarity,
        }

    def calculate_similarity(self,
                             target: ElementProperties,
                             candidate: ElementProperties,
                             sparse: bool = False) -> float:
        """
        Calculate overall similarity between target and candidate elements.

        Score = Σ(similarity(target.prop, candidate.prop) * weight) / Σ(weight)

        Args:
            target: Properties of the element as it was
            candidate: Properties of a candidate on the current page
            sparse: Ignore properties that are empty on the target

        Returns:
            Similarity score in [0, 1]
        """
        total_score = 0.0
        max_possible_score = 0.0

        for prop, function in self._functions.items():
            weight = self.weights.get(prop, 0)
            if weight <= 0:
                continue
            target_value = getattr(target, prop)
            if sparse and not target_value:
                continue
            total_score += function(target_value, getattr(candidate, prop)) * weight
            max_possible_score += weight

        # A bare locator says nothing about button-ness unless it names a tag
        weight = self.weights.get('is_button', 0)
        if weight > 0 and (not sparse or target.tag):
            total_score += (1.0 if target.is_button == candidate.is_button else 0.0) * weight
            max_possible_score += weight

        if max_possible_score > 0:
            return total_score / max_possible_score
        return 0.0

    def find_best_match(self,
                        target: ElementProperties,
                        candidates: List[ElementProperties],
                        threshold: float = 0.6,
                        sparse: bool = False) -> Optional[Tuple[ElementProperties, float]]:
        """
        Find the best matching candidate for the target element.

        Returns:
            Tuple of (best_match, score) or None if no match above threshold
        """
        ranked = self.rank_candidates(target, candidates, top_k=1, sparse=sparse)
        if ranked and ranked[0][1] >= threshold:
            logger.debug(f"Found best match with similarity score: {ranked[0][1]:.3f}")
            return ranked[0]

        logger.debug(f"No match found above threshold {threshold}")
        return None

    def rank_candidates(self,
                        target: ElementProperties,
                        candidates: List[ElementProperties],
                        top_k: int = 10,
                        sparse: bool = False) -> List[Tuple[ElementProperties, float]]:
        """
        Rank candidates by similarity score, highest first.

        Ties keep document order.
        """
        scored_candidates = [
            (candidate, self.calculate_similarity(target, candidate, sparse=sparse))
            for candidate in candidates
        ]
        scored_candidates.sort(key=lambda x: x[1], reverse=True)
        return scored_candidates[:top_k]

    # =================== Similarity Functions ===================

    def _equality_similarity(self, a: str, b: str) -> float:
        """Exact string equality."""
        if not a and not b:
            return 1.0
        if not a or not b:
            return 0.0
        return 1.0 if a == b else 0.0

    def _levenshtein_similarity(self, a: str, b: str) -> float:
        """Levenshtein distance normalized to a similarity in [0, 1]."""
        if not a and not b:
            return 1.0
        if not a or not b:
            return 0.0

        cache_key = (a, b)
        if cache_key in self._levenshtein_cache:
            distance = self._levenshtein_cache[cache_key]
        else:
            distance = self._levenshtein_distance(a, b)
            self._levenshtein_cache[cache_key] = distance

        return 1.0 - (distance / max(len(a), len(b)))

    def _levenshtein_distance(self, s1: str, s2: str) -> int:
        """Calculate Levenshtein (edit) distance between two strings."""
        if len(s1) < len(s2):
            return self._levenshtein_distance(s2, s1)

        if len(s2) == 0:
            return len(s1)

        previous_row = list(range(len(s2) + 1))
        for i, c1 in enumerate(s1):
            current_row = [i + 1]
            for j, c2 in enumerate(s2):
                insertions = previous_row[j + 1] + 1
                deletions = current_row[j] + 1
                substitutions = previous_row[j] + (c1 != c2)
                current_row.append(min(insertions, deletions, substitutions))
            previous_row = current_row

        return previous_row[-1]

    def _jaro_winkler_similarity(self, a: str, b: str, scaling: float = 0.1) -> float:
        """Jaro-Winkler similarity, favouring strings with a common prefix."""
        if not a and not b:
            return 1.0
        if not a or not b:
            return 0.0

        jaro = self._jaro_similarity(a, b)

        prefix_len = 0
        for i in range(min(len(a), len(b), 4)):
            if a[i] == b[i]:
                prefix_len += 1
            else:
                break

        return jaro + (prefix_len * scaling * (1 - jaro))

    def _jaro_similarity(self, a: str, b: str) -> float:
        if a == b:
            return 1.0

        len_a, len_b = len(a), len(b)
        match_window = max(max(len_a, len_b) // 2 - 1, 1)

        a_matches = [False] * len_a
        b_matches = [False] * len_b
        matches = 0
        transpositions = 0

        for i in range(len_a):
            start = max(0, i - match_window)
            end = min(i + match_window + 1, len_b)
            for j in range(start, end):
                if b_matches[j] or a[i] != b[j]:
                    continue
                a_matches[i] = b_matches[j] = True
                matches += 1
                break

        if matches == 0:
            return 0.0

        k = 0
        for i in range(len_a):
            if not a_matches[i]:
                continue
            while not b_matches[k]:
                k += 1
            if a[i] != b[k]:
                transpositions += 1
            k += 1

        return (matches / len_a + matches / len_b +
                (matches - transpositions / 2) / matches) / 3

    def _set_similarity(self, a: str, b: str, delimiter: str = ' ') -> float:
        """Jaccard similarity of whitespace-separated tokens (e.g. CSS classes)."""
        set_a = {token for token in a.lower().split(delimiter) if token} if a else set()
        set_b = {token for token in b.lower().split(delimiter) if token} if b else set()

        if not set_a and not set_b:
            return 1.0
        if not set_a or not set_b:
            return 0.0
        return len(set_a & set_b) / len(set_a | set_b)

    def _list_set_similarity(self, a: List[str], b: List[str]) -> float:
        """Set similarity for lists of strings."""
        if not a and not b:
            return 1.0
        if not a or not b:
            return 0.0

        set_a = set(item.lower() for item in a)
        set_b = set(item.lower() for item in b)
        return len(set_a & set_b) / len(set_a | set_b)

    def _intersect_value_similarity(self, a: Dict[str, str], b: Dict[str, str]) -> float:
        """Share of attribute key/value pairs that are identical."""
        if not a and not b:
            return 1.0
        if not a or not b:
            return 0.0

        common_keys = set(a.keys()) & set(b.keys())
        matching_pairs = sum(1 for k in common_keys if a[k] == b[k])
        return matching_pairs / max(len(a), len(b))
