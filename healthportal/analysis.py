# healthportal/analysis.py
"""Lab report parameter classification and summaries."""
from __future__ import annotations


def parse_range(normal_range: str) -> tuple[float, float] | None:
    """Parse ``"min-max"``; returns None when the text is not a range."""
    if not normal_range or "-" not in normal_range:
        return None
    low, _, high = normal_range.partition("-")
    try:
        return float(low.strip()), float(high.strip())
    except ValueError:
        return None


def classify(value: float, normal_range: str) -> str:
    bounds = parse_range(normal_range)
    if bounds is None:
        return "normal"
    low, high = bounds
    if value > high:
        return "critical" if value > high * 1.5 else "high"
    if value < low:
        return "critical" if value < low * 0.5 else "low"
    return "normal"


def parse_parameter_lines(text: str) -> dict:
    """
    Parse one parameter per line: ``name, value, unit, min-max``.
    Lines that do not have all four parts or a numeric value are skipped.
    """
    parameters = {}
    for line in (text or "").splitlines():
        parts = [p.strip() for p in line.split(",")]
        if len(parts) < 4 or not all(parts[:4]):
            continue
        name, raw_value, unit, normal_range = parts[:4]
        try:
            value = float(raw_value)
        except ValueError:
            continue
        parameters[name] = {
            "value": value,
            "unit": unit,
            "normal_range": normal_range,
            "status": classify(value, normal_range),
        }
    return parameters


def summarize(parameters: dict) -> dict:
    statuses = [p.get("status") for p in parameters.values()]
    normal = statuses.count("normal")
    abnormal = statuses.count("high") + statuses.count("low")
    critical = statuses.count("critical")

    overall, risk = "healthy", "low"
    if critical > 0:
        overall, risk = "critical", "high"
    elif abnormal > 2:
        overall, risk = "attention", "medium"

    recommendations = []
    if critical > 0:
        recommendations.append("Immediate medical attention required")
    if abnormal > 0:
        recommendations.append("Follow up with healthcare provider")
    if normal > 0:
        recommendations.append("Continue monitoring")

    return {
        "normal_count": normal,
        "abnormal_count": abnormal,
        "critical_count": critical,
        "overall_status": overall,
        "risk_level": risk,
        "recommendations": recommendations,
    }


def complete_analysis(analysis: dict | None) -> dict | None:
    """Fill in a missing summary from the analysis parameters."""
    if not analysis or analysis.get("summary") or not analysis.get("parameters"):
        return analysis
    return {**analysis, "summary": summarize(analysis["parameters"])}
