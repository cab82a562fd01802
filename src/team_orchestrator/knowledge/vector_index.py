"""
Vector Index - fixed-window chunking and cosine similarity ranking.

Pure functions, no I/O. Chunks are character windows with a fixed
overlap; each chunk records its offsets and the 1-based inclusive line
range it covers so search results can point back into the document.
"""

import math
from dataclasses import dataclass
from typing import Sequence

import numpy as np

DEFAULT_WINDOW = 1000
DEFAULT_OVERLAP = 200


@dataclass(frozen=True)
class LineRange:
	"""1-based inclusive line span."""
	start: int
	end: int

	def to_dict(self) -> dict:
		return {"from": self.start, "to": self.end}


@dataclass(frozen=True)
class TextChunk:
	"""One window of a document."""
	index: int
	text: str
	start_offset: int
	end_offset: int
	line_range: LineRange


def expected_chunk_count(length: int, window: int = DEFAULT_WINDOW, overlap: int = DEFAULT_OVERLAP) -> int:
	"""Number of chunks chunk_text produces for content of the given length."""
	if length <= 0:
		return 0
	if length <= window:
		return 1
	return math.ceil((length - overlap) / (window - overlap))


def chunk_text(
	content: str,
	window: int = DEFAULT_WINDOW,
	overlap: int = DEFAULT_OVERLAP,
) -> list[TextChunk]:
	"""
	Split content into overlapping fixed-size windows.

	Windows start at multiples of (window - overlap). The last window is
	clipped to the end of the content, so consecutive chunks overlap by
	exactly `overlap` characters except where the final one is shorter.
	Empty content yields no chunks.

	Args:
		content: Full document text
		window: Window size in characters
		overlap: Characters shared by consecutive windows (must be < window)

	Returns:
		Chunks in document order
	"""
	if window <= 0:
		raise ValueError(f"window must be positive, got {window}")
	if not 0 <= overlap < window:
		raise ValueError(f"overlap must be in [0, window), got {overlap}")
	if not content:
		return []

	stride = window - overlap
	length = len(content)
	chunks: list[TextChunk] = []
	start = 0

	while True:
		end = min(start + window, length)
		chunks.append(TextChunk(
			index=len(chunks),
			text=content[start:end],
			start_offset=start,
			end_offset=end,
			line_range=LineRange(
				start=content.count("\n", 0, start) + 1,
				end=content.count("\n", 0, max(end - 1, start)) + 1,
			),
		))
		if end >= length:
			break
		start += stride

	return chunks


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
	"""Dot product over norms. A zero vector scores 0 against anything."""
	va = np.asarray(a, dtype=np.float64)
	vb = np.asarray(b, dtype=np.float64)
	if va.shape != vb.shape:
		raise ValueError(f"Vector dimensions differ: {va.shape} vs {vb.shape}")
	norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
	if norm == 0.0:
		return 0.0
	return float(np.dot(va, vb) / norm)


def rank_by_similarity(
	query: Sequence[float],
	vectors: Sequence[Sequence[float]],
	k: int,
) -> list[tuple[int, float]]:
	"""
	Return (position, score) for the top-k vectors by descending similarity.

	Ties keep the earlier position first. Vectors whose dimension differs
	from the query score 0.
	"""
	if k <= 0 or not vectors:
		return []

	q = np.asarray(query, dtype=np.float64)
	q_norm = float(np.linalg.norm(q))
	scores: list[float] = []
	for vec in vectors:
		v = np.asarray(vec, dtype=np.float64)
		if v.shape != q.shape or q_norm == 0.0:
			scores.append(0.0)
			continue
		v_norm = float(np.linalg.norm(v))
		scores.append(0.0 if v_norm == 0.0 else float(np.dot(q, v) / (q_norm * v_norm)))

	# Stable sort on negated score keeps earlier positions ahead on ties
	order = sorted(range(len(scores)), key=lambda i: -scores[i])
	return [(i, scores[i]) for i in order[:k]]
