"""Test package for the N-Back Trainer.

Core engine tests drive a fake clock by hand; the UI smoke tests run
headlessly using pygame's dummy video driver to avoid opening real windows.
To run these tests, execute ``pytest`` from the project root.
"""
