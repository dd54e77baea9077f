"""Client-side proof-of-work solver.

Mirrors what the browser computes so that tests, load tools and scripted
health checks can produce valid submissions against a live challenge.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass

from linkgate.core.pow import compute_proof, has_leading_zeros

DEFAULT_MAX_COUNTER = 5_000_000


@dataclass(frozen=True)
class PowSolution:
    """Fields a client submits alongside a solved challenge."""

    counter: int
    proof: str
    timing: int
    entropy: str


def solve_challenge(
    challenge_id: str,
    nonce: str,
    difficulty: int,
    *,
    timing: int,
    entropy: str | None = None,
    max_counter: int = DEFAULT_MAX_COUNTER,
) -> PowSolution:
    """Search counters until the proof satisfies `difficulty`.

    Args:
        challenge_id: Identifier returned by the challenge endpoint.
        nonce: Server nonce returned with the challenge.
        difficulty: Required count of leading hex zeros.
        timing: Client timestamp (epoch ms) folded into the proof.
        entropy: Client randomness; generated when omitted.
        max_counter: Upper bound of the search space.

    Returns:
        The first solution found.

    Raises:
        ValueError: If no counter up to `max_counter` satisfies the difficulty.
    """
    entropy = entropy or secrets.token_hex(8)
    for counter in range(max_counter + 1):
        proof = compute_proof(challenge_id, nonce, timing, entropy, counter)
        if has_leading_zeros(proof, difficulty):
            return PowSolution(counter=counter, proof=proof, timing=timing, entropy=entropy)
    raise ValueError(f"No solution found within {max_counter} attempts")
