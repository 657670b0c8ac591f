from timeline_export.render.exporter import ExportJob, TimelineExporter, collect_clips
from timeline_export.render.normalizer import ClipNormalizer, atempo_chain
from timeline_export.render.progress import ExportPhase, ProgressReporter
from timeline_export.render.scratch import ScratchDirectory
from timeline_export.render.strategy import CompositionStrategy, choose_strategy

__all__ = [
    "ClipNormalizer",
    "CompositionStrategy",
    "ExportJob",
    "ExportPhase",
    "ProgressReporter",
    "ScratchDirectory",
    "TimelineExporter",
    "atempo_chain",
    "choose_strategy",
    "collect_clips",
]
