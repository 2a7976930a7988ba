from .config import PipelineConfig, SpectrogramConfig, SplitConfig, TrainConfig
from .dataset import FeatureTable, build_feature_table, load_feature_table, stratified_partition
from .evaluate import EvaluationResult, evaluate
from .features import extract_features
from .spectrogram import compute_spectrogram, load_recording, rasterize, render_recording
from .trainer import FittedModel, SearchResult, grid_search

__version__ = "0.1.0"
