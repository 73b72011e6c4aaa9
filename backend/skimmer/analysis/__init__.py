from skimmer.analysis.base import AnalysisProvider, AnalysisResult, AnalysisStatus
from skimmer.analysis.orchestrator import AnalysisOrchestrator

__all__ = ["AnalysisProvider", "AnalysisResult", "AnalysisStatus", "AnalysisOrchestrator"]
