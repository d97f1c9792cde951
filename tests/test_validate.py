import logging

import pytest

from mdump.validate import (A20_WRAP, ALIGN_MAGIC, BOOT_OFFSET, BOOT_SIGNATURE,
                            SIGNATURE_OFFSET, OutputImage, ValidationStatus,
                            check_output)

LOW_MEMORY = BOOT_OFFSET + 512
WITH_WRAP = LOW_MEMORY + A20_WRAP


def image(size, signatures=(), magic_at=None):
    buf = bytearray(size)
    for off in signatures:
        buf[off:off + 2] = BOOT_SIGNATURE
    if magic_at is not None:
        buf[magic_at:magic_at + 4] = ALIGN_MAGIC
    return buf


def test_aligned_image() -> None:
    report = check_output(image(LOW_MEMORY, [SIGNATURE_OFFSET]), LOW_MEMORY)
    assert report.status is ValidationStatus.OK
    assert report.ok
    assert report.shift == 0
    assert report.magic_offset is None


def test_shifted_image_found_by_magic() -> None:
    buf = image(WITH_WRAP, magic_at=0x7C10)
    report = check_output(buf, WITH_WRAP)
    assert report.shift == 0x7C10 - 0x7C00 - 506 == -490
    assert report.magic_offset == 0x7C10
    assert report.status is ValidationStatus.OK


def test_a20_disabled() -> None:
    buf = image(WITH_WRAP, [SIGNATURE_OFFSET, SIGNATURE_OFFSET + A20_WRAP])
    report = check_output(buf, WITH_WRAP)
    assert report.status is ValidationStatus.A20_DISABLED
    assert not report.ok


def test_a20_disabled_uses_shift() -> None:
    shift = 8
    buf = image(WITH_WRAP + shift,
                [SIGNATURE_OFFSET + A20_WRAP + shift],
                magic_at=BOOT_OFFSET + 506 + shift)
    report = check_output(buf, len(buf))
    assert report.shift == shift
    assert report.status is ValidationStatus.A20_DISABLED


def test_unusable_without_signature_or_magic(caplog) -> None:
    with caplog.at_level(logging.WARNING):
        report = check_output(image(LOW_MEMORY), LOW_MEMORY)
    assert report.status is ValidationStatus.UNUSABLE
    assert "Magic number not found" in caplog.text


def test_too_small() -> None:
    report = check_output(image(LOW_MEMORY - 4, [SIGNATURE_OFFSET]), LOW_MEMORY - 4)
    assert report.status is ValidationStatus.TOO_SMALL


def test_size_mismatch_is_only_a_warning(caplog) -> None:
    with caplog.at_level(logging.WARNING):
        report = check_output(image(LOW_MEMORY, [SIGNATURE_OFFSET]), LOW_MEMORY + 4)
    assert "differs from expected" in caplog.text
    assert not report.size_matches
    assert report.ok


@pytest.mark.parametrize("ref_size, status", [
    (100, ValidationStatus.REFERENCE_NOT_BOOTABLE),
    (512, ValidationStatus.OK),
    (None, ValidationStatus.OK),
])
def test_reference_boot_sector(tmp_path, ref_size, status) -> None:
    ref = tmp_path / "mdump.img"
    if ref_size is not None:
        ref.write_bytes(b"\x90" * ref_size)
    buf = image(LOW_MEMORY, [SIGNATURE_OFFSET])
    assert check_output(buf, LOW_MEMORY, reference=ref).status is status


def test_output_image_maps_file(tmp_path) -> None:
    path = tmp_path / "dump.img"
    path.write_bytes(bytes(image(LOW_MEMORY, [SIGNATURE_OFFSET])))
    with OutputImage(path) as img:
        assert len(img) == LOW_MEMORY
        assert check_output(img.data, LOW_MEMORY).ok
    assert img.data == b""


def test_output_image_empty_file(tmp_path) -> None:
    path = tmp_path / "empty.img"
    path.write_bytes(b"")
    with OutputImage(path) as img:
        assert len(img) == 0
        assert check_output(img.data, 4).status is ValidationStatus.TOO_SMALL
