BASE_FRAME_PROMPT = "Describe the main objects, people, and activities in this image."

# Ordered so the assembled prompt is stable regardless of apply order.
ANALYTIC_PROMPT_FRAGMENTS: dict[str, str] = {
    "FaceRecognition": (
        "Focus on any faces visible and try to identify emotions or characteristics."
    ),
    "LPR": "Look for vehicles and their license plates.",
    "ObjectDetection": "Identify specific objects present.",
    "AnomalyDetection": "Note any unusual or anomalous behaviors or situations.",
    "FireSmokeDetection": "Report any visible fire or smoke.",
    "IntrusionDetection": "Report anyone who appears to be an intruder in the area.",
}


def build_frame_prompt(analytic_ids: list[str]) -> str:
    applied = set(analytic_ids)
    parts = [BASE_FRAME_PROMPT]
    parts.extend(
        fragment
        for analytic_id, fragment in ANALYTIC_PROMPT_FRAGMENTS.items()
        if analytic_id in applied
    )
    return " ".join(parts)
