"""
Integrity verifier — checksums and detached signatures for release assets.

Side-car discovery looks, in order, for ``<asset>.asc``/``.sig``, then
per-asset digest files for the asset name and its compression
variants, then the usual aggregate files (``checksums.txt``,
``SHA256SUMS``...). Digest files are parsed line by line; both the
``<digest>  <name>`` layout and BSD ``SHA256 (<name>) = <digest>``
lines are understood.

Signatures are checked by the ``gpg`` executable against a throw-away
keyring in a temporary ``--homedir``, so the user's keyring is never
touched.
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
import shutil
import subprocess
import tempfile
from pathlib import Path

from picolayer.core.errors import ChecksumMismatch, ChecksumNotFound, SignatureInvalid
from picolayer.core.models.release import ChecksumRecord, ReleaseAsset

logger = logging.getLogger(__name__)

SIGNATURE_SUFFIXES = (".asc", ".sig")

DIGEST_SUFFIXES: dict[str, str] = {
    ".sha256": "sha256",
    ".sha256sum": "sha256",
    ".md5": "md5",
    ".sha1": "sha1",
    ".sha512": "sha512",
}

AGGREGATE_NAMES = (
    "checksums.txt",
    "SHA256SUMS",
    "sha256sums.txt",
    "CHECKSUMS",
    "checksums.sha256",
)

COMPRESSION_EXTENSIONS = (
    ".tar.gz", ".tgz", ".tar.xz", ".txz", ".tar.bz2", ".tbz2", ".tar.Z",
    ".tar.lz", ".tar.lzma", ".zip", ".gz", ".xz", ".bz2", ".Z", ".lz", ".lzma",
)

DIGEST_LENGTHS = {32: "md5", 40: "sha1", 64: "sha256", 128: "sha512"}
ALGORITHMS = ("sha256", "sha1", "md5", "sha512")

_HEX = re.compile(r"^[0-9a-fA-F]+$")
_BSD_LINE = re.compile(r"^(?P<alg>[A-Za-z0-9-]+)\s*\((?P<name>.+)\)\s*=\s*(?P<digest>[0-9a-fA-F]+)$")


# ── Side-car discovery ──────────────────────────────────────────


def filename_variants(name: str) -> list[str]:
    """``name``, its base without a compression suffix, and the base
    with every other compression suffix attached."""
    variants = [name]
    base = name
    for ext in COMPRESSION_EXTENSIONS:
        if name.endswith(ext):
            base = name[: -len(ext)]
            break
    if base != name:
        variants.append(base)
    for ext in COMPRESSION_EXTENSIONS:
        candidate = f"{base}{ext}"
        if candidate not in variants:
            variants.append(candidate)
    return variants


def sidecar_candidates(name: str) -> list[str]:
    """Side-car names to look for, most specific first."""
    candidates = [f"{name}{s}" for s in SIGNATURE_SUFFIXES]
    for variant in filename_variants(name):
        for suffix in (*DIGEST_SUFFIXES, *SIGNATURE_SUFFIXES):
            candidate = f"{variant}{suffix}"
            if candidate not in candidates:
                candidates.append(candidate)
    candidates.extend(AGGREGATE_NAMES)
    return candidates


def is_signature(name: str) -> bool:
    return name.lower().endswith(SIGNATURE_SUFFIXES)


def find_sidecar(
    assets: list[ReleaseAsset],
    asset: ReleaseAsset,
    *,
    signatures: bool = True,
) -> ReleaseAsset | None:
    """First side-car for ``asset`` in ``assets`` (case-insensitive names)."""
    by_name: dict[str, ReleaseAsset] = {}
    for a in assets:
        by_name.setdefault(a.name.lower(), a)
    for candidate in sidecar_candidates(asset.name):
        if not signatures and is_signature(candidate):
            continue
        found = by_name.get(candidate.lower())
        if found is not None and found.name != asset.name:
            return found
    return None


# ── Digests ─────────────────────────────────────────────────────


def algorithm_for(sidecar_name: str, digest: str) -> str:
    """Infer the hash algorithm from the side-car suffix, then digest length."""
    lowered = sidecar_name.lower()
    for suffix, algorithm in DIGEST_SUFFIXES.items():
        if lowered.endswith(suffix):
            return algorithm
    for algorithm in ALGORITHMS:
        if algorithm in lowered:
            return algorithm
    try:
        return DIGEST_LENGTHS[len(digest)]
    except KeyError:
        raise ChecksumNotFound(f"cannot tell the algorithm of digest {digest!r}") from None


def _parse_line_for(content: str, name: str) -> str | None:
    for raw in content.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        bsd = _BSD_LINE.match(line)
        if bsd:
            if bsd.group("name").strip() == name:
                return bsd.group("digest")
            continue
        if name in line:
            return line.split()[0]
    return None


def parse_checksum(content: str, asset_name: str) -> str:
    """Find the digest for ``asset_name`` in a side-car's text.

    Raises:
        ChecksumNotFound: No line names the asset and the file is not a
            single bare digest.
    """
    for variant in filename_variants(asset_name):
        digest = _parse_line_for(content, variant)
        if digest is not None:
            return digest.lstrip("*").lower()

    digests = {
        token.lower()
        for token in content.split()
        if _HEX.match(token) and len(token) in DIGEST_LENGTHS
    }
    if len(digests) == 1:
        return digests.pop()
    raise ChecksumNotFound(f"could not find a checksum for {asset_name}")


def parse_checksum_text(text: str) -> ChecksumRecord:
    """Parse ``<algorithm>:<hex>`` as given to ``--checksum-text``.

    Raises:
        ValueError: Wrong shape or unsupported algorithm.
    """
    algorithm, sep, digest = text.partition(":")
    algorithm = algorithm.strip().lower()
    if not sep or not digest.strip():
        raise ValueError("expected '<algorithm>:<hex digest>', e.g. 'sha256:abc123...'")
    if algorithm not in ALGORITHMS:
        raise ValueError(f"unsupported algorithm {algorithm!r} (use one of {', '.join(ALGORITHMS)})")
    return ChecksumRecord(algorithm=algorithm, hex_digest=digest, source="text")


def compute_digest(data: bytes, algorithm: str) -> str:
    return hashlib.new(algorithm, data).hexdigest()


def verify_digest(data: bytes, record: ChecksumRecord) -> None:
    """Raise ``ChecksumMismatch`` unless ``data`` hashes to ``record``."""
    got = compute_digest(data, record.algorithm)
    if got.lower() != record.hex_digest.lower():
        raise ChecksumMismatch(record.hex_digest, got)
    logger.info("%s checksum verified (%s)", record.algorithm, record.source or "checksum")


# ── Signatures ──────────────────────────────────────────────────


def load_public_key(key: str, client=None) -> bytes:
    """Public key material from a URL, a file path, or the literal text."""
    if key.startswith(("http://", "https://")):
        if client is None:
            raise SignatureInvalid("cannot download the public key without a client")
        logger.info("Downloading public key from %s", key)
        return client.download(key)
    if key.lstrip().startswith("-----BEGIN"):
        return key.encode("utf-8")
    path = Path(key)
    try:
        if path.is_file():
            return path.read_bytes()
    except OSError as e:
        raise SignatureInvalid(f"cannot read public key {path}: {e}") from e
    return key.encode("utf-8")


def _gpg(gpg: str, home: str, *args: str) -> subprocess.CompletedProcess:
    return subprocess.run(
        [gpg, "--batch", "--no-tty", "--homedir", home, *args],
        capture_output=True,
        text=True,
    )


def verify_signature(data: bytes, signature: bytes, public_key: bytes, *, gpg: str = "gpg") -> None:
    """Check a detached signature (armored or binary) over ``data``.

    Raises:
        SignatureInvalid: gpg is missing, the key cannot be imported, or
            the signature does not verify.
    """
    if shutil.which(gpg) is None:
        raise SignatureInvalid(f"'{gpg}' is required to verify signatures but was not found")

    with tempfile.TemporaryDirectory(prefix="picolayer-gpg-") as home:
        os.chmod(home, 0o700)
        key_file = Path(home, "key.asc")
        sig_file = Path(home, "asset.sig")
        data_file = Path(home, "asset")
        key_file.write_bytes(public_key)
        sig_file.write_bytes(signature)
        data_file.write_bytes(data)

        imported = _gpg(gpg, home, "--import", str(key_file))
        if imported.returncode != 0:
            raise SignatureInvalid(f"could not import public key: {_last_line(imported.stderr)}")

        verified = _gpg(gpg, home, "--verify", str(sig_file), str(data_file))
        if verified.returncode != 0:
            raise SignatureInvalid(f"signature verification failed: {_last_line(verified.stderr)}")
    logger.info("Signature verified")


def _last_line(text: str) -> str:
    lines = [line for line in (text or "").splitlines() if line.strip()]
    return lines[-1].strip() if lines else "no output from gpg"


# ── Whole-asset verification ────────────────────────────────────


def verify_asset(
    data: bytes,
    asset: ReleaseAsset,
    assets: list[ReleaseAsset],
    client,
    public_key: str | None = None,
) -> None:
    """Verify ``data`` (the bytes of ``asset``) against its side-car.

    A signature side-car is checked when a public key is given;
    without one we fall back to a digest side-car, or warn.

    Raises:
        ChecksumNotFound: A key was supplied but no side-car exists.
        ChecksumMismatch / SignatureInvalid: Verification failed.
    """
    sidecar = find_sidecar(assets, asset)

    if sidecar is not None and is_signature(sidecar.name):
        if public_key:
            logger.info("Verifying signature %s", sidecar.name)
            verify_signature(data, client.download(sidecar.download_url), load_public_key(public_key, client))
            return
        logger.warning("Found signature %s but no public key was given", sidecar.name)
        sidecar = find_sidecar(assets, asset, signatures=False)

    if sidecar is None:
        if public_key:
            raise ChecksumNotFound(f"no checksum or signature file found for {asset.name}")
        logger.warning("No checksum file found for %s; skipping verification", asset.name)
        return

    logger.info("Verifying checksum with %s", sidecar.name)
    content = client.download(sidecar.download_url).decode("utf-8", errors="replace")
    digest = parse_checksum(content, asset.name)
    record = ChecksumRecord(
        algorithm=algorithm_for(sidecar.name, digest),
        hex_digest=digest,
        source=sidecar.name,
    )
    verify_digest(data, record)
