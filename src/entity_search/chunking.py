"""Text chunking strategies for semantic search.

Implements bounded, overlapping chunking with boundary preference.
All chunking is deterministic: same input + config -> same chunks.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Literal, Protocol

from langchain_text_splitters import RecursiveCharacterTextSplitter

# Preferred chunk end points, strongest first
BOUNDARY_SEPARATORS = ("\n\n", "\n", ". ", " ")


@dataclass(frozen=True)
class ChunkingConfig:
    """Configuration for text chunking.

    Attributes:
        chunk_size: Maximum chunk length (characters, or tokens when a tokenizer is set)
        overlap: Number of units shared by consecutive chunks
        strategy: "window" for exact sliding windows, "recursive" for separator-based splitting
        tokenizer: Optional tiktoken encoding name; only used by the recursive strategy
    """

    chunk_size: int = 500
    overlap: int = 100
    strategy: Literal["window", "recursive"] = "window"
    tokenizer: str | None = None

    def __post_init__(self) -> None:
        """Validate configuration parameters."""
        _validate_window(self.chunk_size, self.overlap)
        if self.strategy not in ("window", "recursive"):
            raise ValueError(f"strategy must be 'window' or 'recursive', got {self.strategy!r}")
        if self.tokenizer is not None and self.strategy != "recursive":
            raise ValueError("tokenizer is only supported by the 'recursive' strategy")


def _validate_window(chunk_size: int, overlap: int) -> None:
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    if overlap < 0:
        raise ValueError(f"overlap must be non-negative, got {overlap}")
    if overlap >= chunk_size:
        raise ValueError(f"overlap ({overlap}) must be less than chunk_size ({chunk_size})")


@dataclass(frozen=True)
class Chunk:
    """A single text chunk with position information.

    Attributes:
        text: Chunk text content
        start: Starting character offset in original text
        end: Ending character offset (exclusive) in original text
        chunk_index: 0-indexed position in the list of chunks
    """

    text: str
    start: int
    end: int
    chunk_index: int

    def __post_init__(self) -> None:
        """Validate chunk properties."""
        if not self.text:
            raise ValueError("Chunk text cannot be empty")
        if self.start < 0 or self.end <= self.start:
            raise ValueError(f"Invalid offsets: start={self.start}, end={self.end}")
        if self.chunk_index < 0:
            raise ValueError(f"chunk_index must be non-negative, got {self.chunk_index}")


class Chunker(Protocol):
    """Protocol for text chunking implementations."""

    def chunk(self, text: str) -> list[Chunk]:
        """Split text into overlapping chunks.

        Args:
            text: Input text to chunk

        Returns:
            List of Chunk objects in order (empty for empty text)
        """
        ...


def _window_end(text: str, start: int, chunk_size: int, overlap: int) -> int:
    """Pick the end offset for the window starting at ``start``.

    Prefers the last natural boundary inside the window, provided the resulting
    chunk stays longer than the overlap so the next window still advances.
    """
    hard_end = start + chunk_size
    if hard_end >= len(text):
        return len(text)

    window = text[start:hard_end]
    for separator in BOUNDARY_SEPARATORS:
        cut = window.rfind(separator)
        if cut == -1:
            continue
        end = start + cut + len(separator)
        if end - start > overlap:
            return end
    return hard_end


def _window_spans(text: str, chunk_size: int, overlap: int) -> list[tuple[int, int]]:
    spans: list[tuple[int, int]] = []
    start = 0
    while start < len(text):
        end = _window_end(text, start, chunk_size, overlap)
        # Whitespace-only windows carry nothing to embed
        if text[start:end].strip():
            spans.append((start, end))
        if end >= len(text):
            break
        start = end - overlap
    return spans


def split_text(text: str, chunk_size: int, overlap: int) -> list[str]:
    """Split text into overlapping bounded-length chunks.

    Each chunk is at most ``chunk_size`` characters long and starts ``overlap``
    characters before the previous chunk ended. Windows that are entirely
    whitespace are skipped, so only whitespace can fall outside every chunk.
    When no window is skipped, dropping the first ``overlap`` characters of
    every chunk after the first reconstructs the text.

    Args:
        text: Input text
        chunk_size: Maximum chunk length in characters
        overlap: Characters shared by consecutive chunks

    Returns:
        Ordered list of non-blank chunk strings; empty for blank text

    Raises:
        ValueError: If chunk_size <= 0 or overlap is outside [0, chunk_size)

    Example:
        >>> split_text("abcdefghij", chunk_size=4, overlap=1)
        ['abcd', 'defg', 'ghij']
    """
    _validate_window(chunk_size, overlap)
    return [text[start:end] for start, end in _window_spans(text, chunk_size, overlap)]


class WindowChunker:
    """Sliding-window chunker with exact overlap and boundary preference."""

    def __init__(self, config: ChunkingConfig):
        self.config = config

    def chunk(self, text: str) -> list[Chunk]:
        spans = _window_spans(text, self.config.chunk_size, self.config.overlap)
        return [
            Chunk(text=text[start:end], start=start, end=end, chunk_index=idx)
            for idx, (start, end) in enumerate(spans)
        ]


class RecursiveCharacterChunker:
    """Separator-aware recursive chunker.

    Uses langchain's RecursiveCharacterTextSplitter. Lengths are measured in
    characters, or in tiktoken tokens when the config names a tokenizer.
    Overlap is aligned to separators and therefore approximate.
    """

    def __init__(self, config: ChunkingConfig):
        """Initialize chunker with configuration.

        Args:
            config: Chunking configuration
        """
        self.config = config
        self.splitter = RecursiveCharacterTextSplitter(
            chunk_size=config.chunk_size,
            chunk_overlap=config.overlap,
            length_function=self._length_function(config.tokenizer),
            separators=["\n\n", "\n", ". ", " ", ""],
        )

    @staticmethod
    def _length_function(tokenizer: str | None) -> Callable[[str], int]:
        if tokenizer is None:
            return len

        import tiktoken

        encoding = tiktoken.get_encoding(tokenizer)
        return lambda text: len(encoding.encode(text, disallowed_special=()))

    def chunk(self, text: str) -> list[Chunk]:
        if not text.strip():
            return []

        chunks: list[Chunk] = []
        current_pos = 0
        for chunk_text in self.splitter.split_text(text):
            # Locate chunk in original text; the splitter strips surrounding whitespace
            start = text.find(chunk_text, current_pos)
            if start == -1:
                start = text.find(chunk_text)
            if start == -1:
                continue
            end = start + len(chunk_text)
            chunks.append(Chunk(text=chunk_text, start=start, end=end, chunk_index=len(chunks)))
            current_pos = start + 1

        return chunks


def create_chunker(config: ChunkingConfig) -> Chunker:
    """Factory function to create a chunker for the configured strategy."""
    if config.strategy == "recursive":
        return RecursiveCharacterChunker(config)
    return WindowChunker(config)


def chunk_text(
    text: str,
    chunk_size: int = 500,
    overlap: int = 100,
    strategy: Literal["window", "recursive"] = "window",
) -> list[Chunk]:
    """Convenience function to chunk text with an ad-hoc config.

    Example:
        >>> chunks = chunk_text("Long text here...", chunk_size=500, overlap=100)
        >>> len(chunks)
        1
    """
    config = ChunkingConfig(chunk_size=chunk_size, overlap=overlap, strategy=strategy)
    return create_chunker(config).chunk(text)
