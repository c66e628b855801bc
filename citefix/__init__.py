"""
CiteFix.

Citation probability analysis for AI answer engines: benchmarks a domain
against the pages answer engines currently cite for a topic, scores it and
generates remediation assets, orchestrated with LangGraph and Claude.
"""

__version__ = "1.0.0"
__author__ = "CiteFix Team"

# Lazy imports to avoid circular dependencies
def get_pipeline():
    """Get the AnalysisPipeline class (lazy import)."""
    from citefix.pipeline.orchestrator import AnalysisPipeline
    return AnalysisPipeline

__all__ = ["get_pipeline", "__version__"]
