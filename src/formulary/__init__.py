"""
Formulary - versioned package manifests generated from GitHub releases.
"""
