# Configuration file for the Sphinx documentation builder.
#
# For the full list of built-in configuration values, see the documentation:
# https://www.sphinx-doc.org/en/master/usage/configuration.html

import os
import sys

sys.path.insert(0, os.path.abspath("../../src"))

project = "oaimedia"
copyright = "2026, oaimedia contributors"
author = "oaimedia contributors"
release = "0.1.0"

extensions = [
    "myst_parser",
    "sphinx.ext.autodoc",
    "sphinx.ext.autosummary",
    "sphinx.ext.napoleon",  # Google-style docstrings
    "sphinx_autodoc_typehints",
    "sphinxcontrib.mermaid",  # polling state diagram
]

templates_path = ["_templates"]
exclude_patterns = []

autosummary_generate = True
autodoc_default_options = {
    "members": True,
    "undoc-members": False,
    "show-inheritance": True,
}
typehints_fully_qualified = False

html_theme = "furo"

myst_enable_extensions = [
    "linkify",
    "colon_fence",
]

html_static_path = ["_static"]
