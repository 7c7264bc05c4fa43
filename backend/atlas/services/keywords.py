"""TF-IDF keyword extraction for topic clusters."""

from __future__ import annotations

from typing import Mapping, Sequence

import numpy as np
from sklearn.feature_extraction.text import TfidfVectorizer


def extract_cluster_keywords(
    texts_by_cluster: Mapping[int, Sequence[str]],
    *,
    top_k: int = 5,
) -> dict[int, list[str]]:
    """Return the highest-weighted terms of each cluster, fitted over the whole corpus."""

    texts: list[str] = []
    label_rows: dict[int, list[int]] = {}
    for label, cluster_texts in texts_by_cluster.items():
        rows = label_rows.setdefault(label, [])
        for text in cluster_texts:
            rows.append(len(texts))
            texts.append(text or "")

    if not any(text.strip() for text in texts):
        return {}

    vectorizer = TfidfVectorizer(max_features=256, ngram_range=(1, 2), stop_words="english")
    try:
        tfidf_matrix = vectorizer.fit_transform(texts)
    except ValueError:
        # every token was a stop word
        return {}
    feature_names = np.array(vectorizer.get_feature_names_out())

    keywords_by_label: dict[int, list[str]] = {}
    for label, indices in label_rows.items():
        if not indices:
            continue
        weights = np.asarray(tfidf_matrix[indices].mean(axis=0)).ravel()
        if not weights.size:
            continue
        sorted_idx = weights.argsort()[::-1]
        keywords_by_label[label] = [str(feature_names[i]) for i in sorted_idx if weights[i] > 0][:top_k]

    return keywords_by_label
