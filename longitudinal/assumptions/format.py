from enum import Enum

from longitudinal.assumptions.tests import (
    AssumptionResult,
    HomogeneityOfVarianceTest,
    NormalityTest,
    SphericityTest,
)

class AssumptionTestKeys(Enum):
    """Enum representing the keys used in the assumption test results."""
    NORMALITY = {
        "input_variables": ["data"],
        "function": NormalityTest,
        "input_types": ["numeric"],
        "output_variables": ["result", "statistic", "p_value", "details", "test_used", "warnings", "figures"],
        "output_types": ["enum", "float", "float", "str", "str", "list", "dict"]
    }
    HOMOGENEITY = {
        "input_variables": ["data", "groups"],
        "function": HomogeneityOfVarianceTest,
        "input_types": ["numeric", "categorical"],
        "output_variables": ["result", "statistic", "p_value", "details", "test_used", "group_variances", "warnings", "figures"],
        "output_types": ["enum", "float", "float", "str", "str", "dict", "list", "dict"]
    }
    SPHERICITY = {
        "input_variables": ["data", "subject_id", "within_factor", "outcome"],
        "function": SphericityTest,
        "input_types": ["dataframe", "str", "str", "str"],
        "output_variables": ["result", "statistic", "p_value", "details", "test_used", "correction", "epsilon", "warnings", "figures"],
        "output_types": ["enum", "float", "float", "str", "str", "enum", "float", "list", "dict"]
    }

def missing_outputs(key, result):
    """Output keys declared for this test type that are absent from a result dict."""
    return [name for name in key.value["output_variables"] if name not in result]

RESULT_LABELS = {
    AssumptionResult.PASSED: "PASS",
    AssumptionResult.WARNING: "WARN",
    AssumptionResult.FAILED: "FAIL",
    AssumptionResult.NOT_APPLICABLE: "N/A",
}

def format_assumption_result(label, result):
    """One-line console summary of an assumption check."""
    status = RESULT_LABELS.get(result.get('result'), "?")
    test_used = result.get('test_used') or ""
    statistic = result.get('statistic')
    p_value = result.get('p_value')

    parts = [f"[{status:>4}] {label}"]
    if test_used:
        parts.append(f"({test_used})")
    if statistic is not None and p_value is not None:
        parts.append(f"stat={statistic:.4f}, p={p_value:.4f}")
    return " ".join(parts)

def format_assumption_results(results, title=None):
    """
    Render a block of assumption checks for the console report.

    Args:
        results (dict): Mapping of label -> assumption result dict
        title (str, optional): Heading printed above the block

    Returns:
        str: Multi-line report
    """
    lines = []
    if title:
        lines.append(title)
        lines.append("-" * len(title))
    for label, result in results.items():
        lines.append(format_assumption_result(label, result))
        details = result.get('details')
        if details:
            lines.append(f"       {details}")
        for warning in result.get('warnings', []):
            lines.append(f"       ! {warning}")
    return "\n".join(lines)
