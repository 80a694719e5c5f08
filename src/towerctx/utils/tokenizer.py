# src/towerctx/utils/tokenizer.py
import logging
from typing import Callable

import tiktoken

logger = logging.getLogger(__name__)

DEFAULT_ENCODING = "cl100k_base"
FALLBACK_ENCODING = "p50k_base"

TokenizeFn = Callable[[str], int]


class Tokenizer:
    _encoding = None
    _unavailable = False

    @classmethod
    def get_encoding(cls):
        if cls._encoding is None and not cls._unavailable:
            try:
                cls._encoding = tiktoken.get_encoding(DEFAULT_ENCODING)
            except Exception:
                try:
                    cls._encoding = tiktoken.get_encoding(FALLBACK_ENCODING)
                except Exception as e:
                    # Encodings are fetched on first use; offline hosts end up here.
                    logger.warning("tiktoken encodings unavailable (%s); estimating tokens", e)
                    cls._unavailable = True
        return cls._encoding

    @staticmethod
    def estimate(text: str) -> int:
        return len(text) // 4

    @staticmethod
    def count(text: str) -> int:
        """Counts tokens for a given text, estimating when no encoding can be loaded."""
        encoding = Tokenizer.get_encoding()
        if encoding is None:
            return Tokenizer.estimate(text)
        try:
            return len(encoding.encode(text, disallowed_special=()))
        except Exception as e:
            logger.debug("Token encoding failed (%s); estimating", e)
            return Tokenizer.estimate(text)

    @classmethod
    def reset(cls) -> None:
        cls._encoding = None
        cls._unavailable = False
