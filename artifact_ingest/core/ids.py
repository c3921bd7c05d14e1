"""Artifact identifier generation."""

from __future__ import annotations

import random
import re
import string

ARTIFACT_ID_LENGTH = 12
ARTIFACT_ID_ALPHABET = string.ascii_lowercase + string.ascii_uppercase + string.digits
ARTIFACT_ID_PATTERN = re.compile(rf"^[A-Za-z0-9]{{{ARTIFACT_ID_LENGTH}}}$")


def new_artifact_id(rng: random.Random | None = None) -> str:
    """Return a fresh random artifact id."""
    source = rng or random
    return "".join(source.choices(ARTIFACT_ID_ALPHABET, k=ARTIFACT_ID_LENGTH))
