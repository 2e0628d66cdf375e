"""
Core processing modules for FourAxis
"""

from .mesh_loader import MeshLoader, MeshData, MeshProcessor
from .errors import (
    FourAxisError,
    ConfigurationError,
    OptimizationError,
    InputConsistencyError,
    NonManifoldInputError,
    StageError,
)
from .orientation import OrientationNormalizer, global_optimal_rotation
from .extremes import ExtremeFaces, select_extremes
from .view_renderer import ViewRenderer, FaceIdImage
from .visibility import (
    VisibilityEngine,
    VisibilityResult,
    VisibilityStrategy,
    RayShootingStrategy,
    ProjectionStrategy,
    RenderingStrategy,
    make_strategy,
    sample_directions,
    detect_non_visible_faces,
)
from .set_cover import MilpCoverSolver
from .energy import SwapMoveSolver
from .association import MachiningRegion, assign_directions, machining_regions, target_directions
from .frequencies import FrequencyRestorer, RestorationResult, BINARY_SEARCH_ITERATIONS
from .pipeline import Collaborators, FabricationData, FabricationParameters, FabricationPipeline
from .session_file import SessionFormatError, load_session, save_session

__all__ = [
    # Mesh loading
    'MeshLoader',
    'MeshData',
    'MeshProcessor',
    # Errors
    'FourAxisError',
    'ConfigurationError',
    'OptimizationError',
    'InputConsistencyError',
    'NonManifoldInputError',
    'StageError',
    # Orientation / extremes
    'OrientationNormalizer',
    'global_optimal_rotation',
    'ExtremeFaces',
    'select_extremes',
    # Visibility
    'ViewRenderer',
    'FaceIdImage',
    'VisibilityEngine',
    'VisibilityResult',
    'VisibilityStrategy',
    'RayShootingStrategy',
    'ProjectionStrategy',
    'RenderingStrategy',
    'make_strategy',
    'sample_directions',
    'detect_non_visible_faces',
    # Direction optimization
    'MilpCoverSolver',
    'SwapMoveSolver',
    'MachiningRegion',
    'assign_directions',
    'machining_regions',
    'target_directions',
    # Frequency restoration
    'FrequencyRestorer',
    'RestorationResult',
    'BINARY_SEARCH_ITERATIONS',
    # Pipeline
    'Collaborators',
    'FabricationData',
    'FabricationParameters',
    'FabricationPipeline',
    # Session file
    'SessionFormatError',
    'load_session',
    'save_session',
]
