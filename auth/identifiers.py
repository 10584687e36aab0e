"""
auth/identifiers.py -- Unique account identifier generation (CVU and alias).

CVU: 22 independent uniform decimal digits (10^22 space).
Alias: three words drawn with replacement from ALIAS_WORDS, joined by dots,
e.g. "sol.rio.nube". Words are lowercase ASCII so every alias matches
^[a-z]+\\.[a-z]+\\.[a-z]+$.

Both are drawn from secrets.SystemRandom (a CSPRNG): predictable identifiers
would let anyone guess other users' account numbers. Each draw is checked
against storage and redrawn on collision, at most max_attempts times before
GenerationExhausted is raised. The UNIQUE indexes on users.cvu / users.alias
remain the final arbiter for draws that race between check and insert.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable, Sequence
from random import Random

from auth.errors import GenerationExhausted
from auth.store import UserStore
from core.config import get_settings

logger = logging.getLogger("userservice.identifiers")

CVU_LENGTH = 22

ALIAS_WORDS: tuple[str, ...] = (
    "sol", "luna", "estrella", "mar", "rio", "monte", "valle", "bosque",
    "flor", "arbol", "piedra", "viento", "fuego", "agua", "tierra", "cielo",
    "nube", "lago", "isla", "playa", "arena", "roca", "hoja", "rama",
    "nieve", "lluvia", "trueno", "rayo", "brisa", "niebla", "aurora", "ocaso",
    "puma", "condor", "zorro", "lobo", "ciervo", "tero", "hornero", "yacare",
    "mate", "tango", "pampa", "sierra", "quebrada", "laguna", "cerro", "delta",
)  # fmt: skip


class IdentifierGenerator:
    """Produces CVU and alias values not yet present in the user store.

    Usage:
        generator = IdentifierGenerator(store)
        cvu = generator.generate_cvu()
        alias = generator.generate_alias()
    """

    def __init__(
        self,
        store: UserStore,
        max_attempts: int | None = None,
        vocabulary: Sequence[str] = ALIAS_WORDS,
        rng: Random | None = None,
    ) -> None:
        if not vocabulary:
            raise ValueError("Alias vocabulary must not be empty.")
        self._store = store
        self._max_attempts = max_attempts or get_settings().identifier_max_attempts
        self._vocabulary = tuple(vocabulary)
        self._rng = rng or secrets.SystemRandom()

    def generate_cvu(self) -> str:
        return self._draw_unique("cvu", self._draw_cvu, self._store.cvu_exists)

    def generate_alias(self) -> str:
        return self._draw_unique("alias", self._draw_alias, self._store.alias_exists)

    def _draw_cvu(self) -> str:
        return "".join(str(self._rng.randrange(10)) for _ in range(CVU_LENGTH))

    def _draw_alias(self) -> str:
        return ".".join(self._rng.choice(self._vocabulary) for _ in range(3))

    def _draw_unique(self, kind: str, draw: Callable[[], str], exists: Callable[[str], bool]) -> str:
        for attempt in range(1, self._max_attempts + 1):
            candidate = draw()
            if not exists(candidate):
                if attempt > 1:
                    logger.info("Unique %s found after %d draws", kind, attempt)
                return candidate
        logger.error("Gave up generating a unique %s after %d draws", kind, self._max_attempts)
        raise GenerationExhausted(kind, self._max_attempts)
