"""Agglomerative speaker clustering on cosine distance.

Algorithm:

* average linkage over a precomputed cosine distance matrix (scikit-learn
  ``AgglomerativeClustering``), all-zero vectors sitting at distance 1;
* with an expected speaker count, cut the tree at
  ``min(expected, max_clusters, n_embeddings)`` clusters;
* otherwise cut at distance ``1 - similarity_threshold`` (ties merge), re-cut
  at ``max_clusters`` when the threshold leaves too many clusters, then merge
  centroid pairs whose similarity still reaches the threshold, closest pair
  first, until none is left;
* cluster ids ``speaker_<i>`` follow the first appearance in time.
"""

from __future__ import annotations

import inspect
from collections.abc import Sequence
from typing import Any

import numpy as np
from sklearn.cluster import AgglomerativeClustering

from ..errors import ClusteringFailed, stage_error
from .logger import logger
from .models import SpeakerCluster, SpeakerEmbedding, centroid_of, cosine_similarity

TIE_EPS = 1e-9


def build_agglo(distance_threshold: float | None, **kwargs: Any) -> AgglomerativeClustering:
    init_sig = inspect.signature(AgglomerativeClustering.__init__)
    params = set(init_sig.parameters)
    wanted = {
        "n_clusters": None,
        "distance_threshold": distance_threshold,
        "linkage": kwargs.pop("linkage", "average"),
    }
    if "metric" in params:
        wanted["metric"] = kwargs.pop("metric", kwargs.pop("affinity", "cosine"))
    elif "affinity" in params:
        wanted["affinity"] = kwargs.pop("metric", kwargs.pop("affinity", "cosine"))
    for key, value in kwargs.items():
        if key in params:
            wanted[key] = value
    return AgglomerativeClustering(**wanted)


def cosine_distance_matrix(matrix: np.ndarray) -> np.ndarray:
    """Pairwise cosine distances; an all-zero row sits at distance 1 from every other row."""

    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    unit = np.divide(matrix, norms, out=np.zeros_like(matrix), where=norms > 0.0)
    distance = np.clip(1.0 - unit @ unit.T, 0.0, 2.0)
    np.fill_diagonal(distance, 0.0)
    return distance


def merge_close_clusters(labels: np.ndarray, matrix: np.ndarray, threshold: float) -> np.ndarray:
    """Join label groups whose centroids have cosine similarity >= ``threshold``."""

    labels = labels.copy()
    while True:
        groups = sorted(set(labels.tolist()))
        if len(groups) <= 1:
            return labels
        centroids = {g: matrix[labels == g].mean(axis=0) for g in groups}
        best_pair = None
        best_sim = -np.inf
        for i in range(len(groups)):
            for j in range(i + 1, len(groups)):
                sim = cosine_similarity(centroids[groups[i]], centroids[groups[j]])
                if sim > best_sim:
                    best_sim = sim
                    best_pair = (groups[i], groups[j])
        if best_pair is None or best_sim < threshold:
            return labels
        keep, drop = best_pair
        labels[labels == drop] = keep


class SpeakerClusterer:
    def cluster(
        self,
        embeddings: Sequence[SpeakerEmbedding],
        expected_clusters: int | None = None,
        max_clusters: int = 10,
        similarity_threshold: float = 0.7,
    ) -> list[SpeakerCluster]:
        if not embeddings:
            raise stage_error(ClusteringFailed, "no embeddings reached the clusterer")
        dims = {e.dimension for e in embeddings}
        if len(dims) != 1:
            raise stage_error(
                ClusteringFailed,
                "embeddings have mixed dimensionality",
                context={"dimensions": sorted(dims)},
            )
        if max_clusters < 1:
            raise stage_error(
                ClusteringFailed, "max_clusters must be >= 1", context={"max_clusters": max_clusters}
            )

        n = len(embeddings)
        matrix = np.vstack([np.asarray(e.vector, dtype=np.float64) for e in embeddings])
        if n == 1:
            labels = np.zeros(1, dtype=int)
        elif expected_clusters is not None:
            labels = self._fixed_count(matrix, min(int(expected_clusters), max_clusters, n))
        else:
            labels = self._by_threshold(matrix, max_clusters, similarity_threshold)

        clusters = self._build(embeddings, labels)
        logger.info(
            "[clustering] %d embedding(s) -> %d cluster(s)%s",
            n,
            len(clusters),
            f" (expected {expected_clusters})" if expected_clusters is not None else "",
        )
        return clusters

    def _fixed_count(self, matrix: np.ndarray, k: int) -> np.ndarray:
        if k <= 1:
            return np.zeros(matrix.shape[0], dtype=int)
        model = build_agglo(None, n_clusters=k, metric="precomputed", linkage="average")
        return np.asarray(model.fit_predict(cosine_distance_matrix(matrix)), dtype=int)

    def _by_threshold(
        self, matrix: np.ndarray, max_clusters: int, similarity_threshold: float
    ) -> np.ndarray:
        distances = cosine_distance_matrix(matrix)
        distance = max(0.0, 1.0 - float(similarity_threshold)) + TIE_EPS
        model = build_agglo(distance, metric="precomputed", linkage="average")
        labels = np.asarray(model.fit_predict(distances), dtype=int)
        found = len(set(labels.tolist()))
        if found > max_clusters:
            logger.debug(
                "[clustering] threshold produced %d clusters; re-cutting at %d", found, max_clusters
            )
            labels = self._fixed_count(matrix, max_clusters)
        return merge_close_clusters(labels, matrix, similarity_threshold)

    def _build(
        self, embeddings: Sequence[SpeakerEmbedding], labels: np.ndarray
    ) -> list[SpeakerCluster]:
        groups: dict[int, list[SpeakerEmbedding]] = {}
        for emb, label in zip(embeddings, labels.tolist()):
            groups.setdefault(int(label), []).append(emb)
        ordered = sorted(groups.values(), key=lambda members: min(e.timestamp for e in members))

        clusters: list[SpeakerCluster] = []
        for idx, members in enumerate(ordered):
            members = sorted(members, key=lambda e: e.timestamp)
            centroid = centroid_of(members)
            sims = [cosine_similarity(e.vector, centroid.vector) for e in members]
            confidence = float(np.clip(np.mean(sims), 0.0, 1.0))
            clusters.append(
                SpeakerCluster(
                    id=f"speaker_{idx}",
                    embeddings=tuple(members),
                    centroid=centroid,
                    confidence=confidence,
                )
            )
        return clusters


__all__ = ["SpeakerClusterer", "build_agglo", "cosine_distance_matrix", "merge_close_clusters"]
