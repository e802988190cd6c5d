"""
MOTORCHECK+ Threading Module
"""

from .worker_pool import (
    WorkerPool,
    video_worker_pool,
    ml_worker_pool,
    process_video_frame,
    run_ml_inference
)

__all__ = [
    'WorkerPool',
    'video_worker_pool',
    'ml_worker_pool',
    'process_video_frame',
    'run_ml_inference'
]
