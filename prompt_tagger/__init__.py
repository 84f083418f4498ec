"""
PhotoPrism Prompt Tagger

A standalone service that reads the generation metadata embedded in
Stable-Diffusion-style images, derives labels from the positive prompt,
and pushes those labels back to a PhotoPrism index exactly once per photo.
"""

__version__ = "1.0.0"
__author__ = "Prompt Tagger Team"
