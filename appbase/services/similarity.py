"""
Similar-content detection for the review queue.

Detectors are advisory: they annotate review-queue entries so approvers can
spot duplicates, and never decide a transition. A detector is any callable
``detector(item, candidates) -> list of content ids``.
"""

import re

from flask import current_app


_TOKEN = re.compile(r'[a-z0-9]+')


def title_tokens(title):
    return set(_TOKEN.findall((title or '').lower()))


def jaccard(a, b):
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


class TitleSimilarityDetector:
    """
    Token-overlap (Jaccard) similarity over titles, plus exact title match.

    Args:
        threshold: Minimum similarity for a candidate to be reported.
                   Defaults to the SIMILARITY_THRESHOLD setting.
        limit: Maximum number of ids reported
    """

    def __init__(self, threshold=None, limit=10):
        self.threshold = threshold
        self.limit = limit

    def __call__(self, item, candidates):
        threshold = self.threshold
        if threshold is None:
            threshold = current_app.config['SIMILARITY_THRESHOLD']

        title = (item.title or '').strip().lower()
        tokens = title_tokens(title)
        scored = []
        for candidate in candidates:
            if candidate.id == item.id:
                continue
            candidate_title = (candidate.title or '').strip().lower()
            if candidate_title == title:
                score = 1.0
            else:
                score = jaccard(tokens, title_tokens(candidate_title))
            if score >= threshold:
                scored.append((score, candidate.id))

        scored.sort(key=lambda pair: -pair[0])
        return [content_id for _, content_id in scored[:self.limit]]


default_detector = TitleSimilarityDetector()
