"""
Formulary Release Pipeline

Components (leaf to root):
- interfaces: release data structures and the ReleaseSource interface
- gh_source / api_source: release enumeration and tarball resolution
- hasher: artifact download and SHA-256 digest
- renderer: Jinja2 manifest templates
- naming / writer: output paths and persistence
- pipeline: per-repository fan-out and fail-fast join
- controller: sequential run over repositories with signal-driven cancellation

Import concrete components from their modules; this package keeps no
re-exports so that `formulary.config` can depend on `interfaces` without
pulling in the pipeline.
"""
