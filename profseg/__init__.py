"""Two-axis behavioural profiling of aggregated tabular data.

Entry points live in `profseg.pipeline` (`analyze`, `analyze_profile`, `main`);
only the data model is re-exported here so that importing the package stays
free of the HTTP stack.
"""

from profseg.models import (
    Category,
    CategoryTag,
    InputError,
    MethodConfig,
    ProfileAnalysisConfig,
    ProfileReport,
    ProfileResult,
    ThresholdUnavailable,
)

__version__ = "0.1.0"

__all__ = [
    "Category",
    "CategoryTag",
    "InputError",
    "MethodConfig",
    "ProfileAnalysisConfig",
    "ProfileReport",
    "ProfileResult",
    "ThresholdUnavailable",
]
