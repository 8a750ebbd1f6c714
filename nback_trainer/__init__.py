"""nback_trainer package

Single n-back training rounds with spatial (3x3 grid) or auditory (spoken
letter) stimuli. The round engine lives in ``trial_engine``; the pygame shell
is ``app`` and ``python -m nback_trainer`` launches it.
"""

__all__ = [
    "__version__",
]

__version__ = "0.1.0"
