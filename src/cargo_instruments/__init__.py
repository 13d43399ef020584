"""
Profile Rust binaries with Xcode Instruments.

This package builds the requested cargo target, picks the Instruments backend
available on the host (`xcrun xctrace` or the older `instruments` binary),
translates the user's request into the backend's command line, and records a
`.trace` bundle into a deterministic location under the cargo target directory.
"""
