from .eta import BaselineRun, EtaEstimator, EtaReading, EtaTuning, format_duration
from .phase import FinishReason, Phase
from .reconciler import PhaseFacts, ProgressReconciler, RenderModel, RunSummary, render_model

__all__ = [
    "BaselineRun",
    "EtaEstimator",
    "EtaReading",
    "EtaTuning",
    "FinishReason",
    "Phase",
    "PhaseFacts",
    "ProgressReconciler",
    "RenderModel",
    "RunSummary",
    "format_duration",
    "render_model",
]
