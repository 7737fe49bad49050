# Configuration file for the Sphinx documentation builder.
#
# For the full list of built-in configuration values, see the documentation:
# https://www.sphinx-doc.org/en/master/usage/configuration.html

import os
import sys

# Project root, so that `connector_studio` is importable by autodoc
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '../../'))

sys.path.insert(0, PROJECT_ROOT)

# -- Project information -----------------------------------------------------

project = 'MCP Connector Studio'
copyright = '2025, MCP Connector Studio contributors'
author = 'MCP Connector Studio contributors'
release = '0.1.0'

# -- General configuration ---------------------------------------------------

extensions = [
    'sphinx.ext.autodoc',           # API reference from docstrings
    'sphinx.ext.napoleon',          # Google-style Args/Returns/Raises sections
    'sphinx_autodoc_typehints',     # Render the type hints
    'myst_parser'                   # Markdown pages (DESIGN.md)
]

source_suffix = {
    '.rst': 'restructuredtext',
    '.md': 'markdown',
}

templates_path = ['_templates']
exclude_patterns = []

# -- Options for HTML output -------------------------------------------------

html_theme = 'sphinx_rtd_theme'

html_theme_options = {
    'collapse_navigation': False,
    'navigation_depth': 4,
    'titles_only': False
}

# -- Autodoc configuration ---------------------------------------------------

autoclass_content = 'both'
autodoc_member_order = 'bysource'
autodoc_default_options = {
    'members': True,
    'undoc-members': False,
    'private-members': False,
    'show-inheritance': True,
}
