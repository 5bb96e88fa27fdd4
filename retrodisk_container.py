#!/usr/bin/env python3
"""
Disk Container Unwrapper.

Some disk images wrap the sector data of a filesystem in a container. This
module recognises them and returns the plain sector image inside, together
with a hint naming the filesystem the container declares.

Containers:
    2IMG: Apple II universal image (header + DOS or ProDOS ordered payload).
    DMK: Track-level image with IDAM pointer tables (TRS-80, CoCo).

Functions:
    unwrap(image): Return a ContainerInfo for a wrapped image, or None.
"""

import logging
import struct
from collections import namedtuple

from retrodisk_image import DiskImage, SECTOR_SIZE

logger = logging.getLogger(__name__)

# image: the unwrapped DiskImage; hint: short name of the expected reader
ContainerInfo = namedtuple('ContainerInfo', 'image hint label comment')

# 2IMG
TWOIMG_MAGIC = b'2IMG'
TWOIMG_HEADER = struct.Struct('<4s4sHHIIIIIII')
TWOIMG_FORMAT_DOS = 0
TWOIMG_FORMAT_PRODOS = 1
TWOIMG_FORMAT_NIB = 2
TWOIMG_FLAG_VOLUME = 0x100
TWOIMG_FLAG_LOCKED = 0x80000000

# DMK
DMK_HEADER_SIZE = 16
DMK_IDAM_SLOTS = 64
DMK_IDAM_MARK = 0xFE
DMK_DATA_MARKS = (0xFB, 0xF8)   # normal, deleted
DMK_DATA_SEARCH = 50
DMK_FLAG_SINGLE_SIDED = 0x40
DMK_MAX_TRACKS = 100
DMK_MAX_TRACK_LEN = 0x4000


def unwrap_2img(image):
    """
    Unwrap a 2IMG container.

    Returns:
        ContainerInfo: The payload and the declared order, or None.
    """
    if image.size < 64 or image.read(0, 4) != TWOIMG_MAGIC:
        return None

    (_, creator, header_size, version, image_format, flags, blocks,
     data_offset, data_length, comment_offset, comment_length) = TWOIMG_HEADER.unpack_from(image.data)

    if image_format == TWOIMG_FORMAT_NIB:
        logger.warning("2IMG container holds a nibble image, which is not supported")
        return None
    if image_format not in (TWOIMG_FORMAT_DOS, TWOIMG_FORMAT_PRODOS):
        logger.debug("2IMG: unknown image format %d", image_format)
        return None

    if data_offset < header_size:
        data_offset = header_size
    if data_length == 0 and image_format == TWOIMG_FORMAT_PRODOS:
        data_length = blocks * 512
    # Zero or overlong lengths mean "to the end of the file"
    if data_length == 0 or data_offset + data_length > image.size:
        logger.debug("2IMG: data length %d clamped to the file", data_length)
        data_length = image.size - data_offset
    payload = image.read(data_offset, data_length)
    if not payload:
        logger.debug("2IMG: payload %d+%d outside the file", data_offset, data_length)
        return None

    comment = image.read(comment_offset, comment_length) if comment_offset and comment_length else None
    if comment is not None:
        comment = comment.decode('latin-1').rstrip('\x00')

    hint = 'prodos' if image_format == TWOIMG_FORMAT_PRODOS else 'dos33'
    logger.debug("2IMG: creator %r version %d, %s order, %d bytes%s%s",
                 creator, version, hint, len(payload),
                 f", volume {flags & 0xFF}" if flags & TWOIMG_FLAG_VOLUME else "",
                 ", locked" if flags & TWOIMG_FLAG_LOCKED else "")
    return ContainerInfo(DiskImage(payload, image.filename), hint, "2IMG", comment)


class DMKTracks:
    """
    Track-level view of a DMK image.

    Attributes:
        num_tracks (int): Tracks per side.
        track_len (int): Bytes per stored track, including the IDAM table.
        sides (int): 1 or 2.
    """
    def __init__(self, image):
        self.image = image
        self.num_tracks = image.byte(1)
        self.track_len = image.word(2)
        single_sided = (image.byte(4) & DMK_FLAG_SINGLE_SIDED) != 0
        # Ignore the header flag if the file size contradicts it
        if image.size == DMK_HEADER_SIZE + self.num_tracks * self.track_len:
            single_sided = True
        self.sides = 1 if single_sided else 2

    @classmethod
    def looks_like(cls, image):
        header = image.read(0, DMK_HEADER_SIZE)
        if header is None or header[0] not in (0x00, 0xFF):
            return False
        num_tracks = header[1]
        track_len = header[2] | (header[3] << 8)
        if not 0 < num_tracks <= DMK_MAX_TRACKS or not 2 * DMK_IDAM_SLOTS < track_len <= DMK_MAX_TRACK_LEN:
            return False
        if image.size not in (DMK_HEADER_SIZE + num_tracks * track_len,
                              DMK_HEADER_SIZE + 2 * num_tracks * track_len):
            return False
        # The first IDAM of track 0 must point at an address mark
        ptr = image.word(DMK_HEADER_SIZE)
        if not ptr:
            return False
        return image.byte(DMK_HEADER_SIZE + (ptr & 0x3FFF)) == DMK_IDAM_MARK

    def sectors(self, track, side):
        """
        Return the sectors of a physical track.

        Returns:
            dict: Sector ID -> sector data.
        """
        data = self.image.data
        track_start = DMK_HEADER_SIZE + (track * self.sides + side) * self.track_len
        found = {}
        for i in range(DMK_IDAM_SLOTS):
            ptr = self.image.word(track_start + i * 2)
            if not ptr:
                break
            abs_idam = track_start + (ptr & 0x3FFF)
            header = self.image.read(abs_idam, 7)
            if header is None or header[0] != DMK_IDAM_MARK:
                continue
            sector_id = header[3]
            length = 128 << (header[4] & 0x03)

            search_start = abs_idam + 7
            for k in range(DMK_DATA_SEARCH):
                if search_start + k >= len(data):
                    break
                if data[search_start + k] in DMK_DATA_MARKS:
                    sector = self.image.read(search_start + k + 1, length)
                    if sector is not None:
                        found.setdefault(sector_id, sector)
                    break
        return found


def unwrap_dmk(image):
    """
    Linearize a DMK image into a plain sector dump.

    Every track contributes its sectors in ascending sector ID order, each
    padded or cut to 256 bytes. All tracks of side 0 come first, then side 1,
    which is the layout the CoCo reader expects for double-sided images.

    Returns:
        ContainerInfo: The linear image with an RS-DOS hint, or None.
    """
    if not DMKTracks.looks_like(image):
        return None

    tracks = DMKTracks(image)
    out = bytearray()
    for side in range(tracks.sides):
        for track in range(tracks.num_tracks):
            sectors = tracks.sectors(track, side)
            for sector_id in sorted(sectors):
                out += sectors[sector_id][:SECTOR_SIZE].ljust(SECTOR_SIZE, b'\x00')

    if not out:
        logger.debug("DMK: no readable sectors")
        return None

    logger.debug("DMK: %d tracks, %d side(s), %d bytes of sector data",
                 tracks.num_tracks, tracks.sides, len(out))
    return ContainerInfo(DiskImage(bytes(out), image.filename), 'rsdos', "DMK", None)


CONTAINERS = (unwrap_2img, unwrap_dmk)


def unwrap(image):
    """
    Recognise a container around `image`.

    Args:
        image (DiskImage): The raw file contents.

    Returns:
        ContainerInfo: The unwrapped image, or None if `image` is not a container.
    """
    for unwrapper in CONTAINERS:
        info = unwrapper(image)
        if info is not None:
            return info
    return None
