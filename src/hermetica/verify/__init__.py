"""Verification — smoke test, SBOM, vulnerability scan, commit signature."""

from hermetica.verify.base import Inspector, VerificationReport, run_inspectors
from hermetica.verify.inventory import Inventory, take_inventory
from hermetica.verify.sbom import NativeSbomGenerator, SyftSbomGenerator, sbom_paths
from hermetica.verify.signature import Keyring, SignatureVerifier
from hermetica.verify.smoke import SmokeTest
from hermetica.verify.vulns import Finding, GrypeScanner, OsvScanner, parse_grype_output

__all__ = [
    "Finding",
    "GrypeScanner",
    "Inspector",
    "Inventory",
    "Keyring",
    "NativeSbomGenerator",
    "OsvScanner",
    "SignatureVerifier",
    "SmokeTest",
    "SyftSbomGenerator",
    "VerificationReport",
    "parse_grype_output",
    "run_inspectors",
    "sbom_paths",
    "take_inventory",
]
