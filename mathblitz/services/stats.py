"""numpy-based summary of recent round win times."""
import numpy as np


def summarize_rounds(rounds: list[dict]) -> dict:
    """
    Summarise time-to-win over resolved rounds.
    Rounds closed without a winner (forced resets) are counted but excluded
    from the timing figures.
    """
    summary: dict = {"rounds": len(rounds), "won": 0}
    if not rounds:
        return summary

    difficulties = np.array([r["difficulty"] for r in rounds])
    tiers, counts = np.unique(difficulties, return_counts=True)
    summary["byDifficulty"] = {str(t): int(c) for t, c in zip(tiers, counts)}

    times = np.array(
        [r["time_taken_ms"] for r in rounds if r.get("time_taken_ms") is not None],
        dtype=float,
    )
    summary["won"] = int(times.size)
    if times.size == 0:
        return summary

    summary.update({
        "meanMs": float(np.mean(times)),
        "medianMs": float(np.median(times)),
        "fastestMs": float(np.min(times)),
        "stdMs": float(np.std(times)),
    })
    return summary
