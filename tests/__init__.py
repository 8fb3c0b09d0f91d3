"""Test package for the dual n-back trainer.

Core tests drive the trial engine with a fake clock and seeded RNG; smoke tests
run the pygame shell headlessly using the SDL dummy drivers.  To run these
tests, execute ``pytest`` from the project root.
"""
