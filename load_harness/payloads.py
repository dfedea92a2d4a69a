"""
Randomised request payloads.

Every create request gets a fresh, schema-valid payload so the server
processes a realistic spread of inputs rather than hitting the same
cached path repeatedly.  Faker provides names and addresses.

Field names follow the target API's student resource (``POST /alunos``):
``nome``, ``idade``, ``telefone`` and ``endereco``.

Faker instances are not shared between threads: each VU builds its own
through :func:`student_payload_factory`.
"""

from __future__ import annotations

from typing import Any, Callable

from faker import Faker

STUDENT_FIELDS = ("nome", "idade", "telefone", "endereco")


def random_student(fake: Faker) -> dict[str, Any]:
    """
    Build a valid student-create payload.

    Returns:
        ``nome`` (full name), ``idade`` (12–62), ``telefone`` formatted
        ``NN-NNNNNNNNN`` and ``endereco`` as ``"<city>, <street number>"``.
    """
    return {
        "nome": f"{fake.first_name()} {fake.last_name()}",
        "idade": fake.random_int(min=12, max=62),
        "telefone": (
            f"{fake.random_int(min=10, max=99)}-{fake.random_int(min=100000000, max=999999999)}"
        ),
        "endereco": f"{fake.city()}, {fake.building_number()}",
    }


def student_payload_factory(seed: int | None = None) -> Callable[[], dict[str, Any]]:
    """Return a zero-argument payload builder backed by its own Faker instance."""
    fake = Faker()
    if seed is not None:
        fake.seed_instance(seed)
    return lambda: random_student(fake)
