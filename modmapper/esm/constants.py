"""Plugin format constants, flags, and magic numbers (Skyrim layout)."""

# Record and GRUP headers are both 24 bytes
HEADER_SIZE = 24
SUBRECORD_HEADER_SIZE = 6   # 4-byte type + 2-byte size

# Record flags
FLAG_MASTER = 0x00000001
FLAG_LOCALIZED = 0x00000080
FLAG_PERSISTENT = 0x00000400
FLAG_INITIALLY_DISABLED = 0x00000800
FLAG_COMPRESSED = 0x00040000
FLAG_LIGHT_MASTER = 0x00000200

# Group types
GROUP_TOP = 0           # Top-level group, label = record type
GROUP_WORLD_CHILDREN = 1
GROUP_INTERIOR_CELL_BLOCK = 2
GROUP_INTERIOR_CELL_SUBBLOCK = 3
GROUP_EXTERIOR_CELL_BLOCK = 4
GROUP_EXTERIOR_CELL_SUBBLOCK = 5
GROUP_CELL_CHILDREN = 6
GROUP_TOPIC_CHILDREN = 7
GROUP_CELL_PERSISTENT = 8
GROUP_CELL_TEMPORARY = 9

# Groups whose contents never hold WRLD/CELL records (placed refs, navmeshes)
SKIPPED_GROUP_TYPES = frozenset({
    GROUP_CELL_CHILDREN,
    GROUP_TOPIC_CHILDREN,
    GROUP_CELL_PERSISTENT,
    GROUP_CELL_TEMPORARY,
})

EXTERIOR_GROUP_TYPES = frozenset({
    GROUP_WORLD_CHILDREN,
    GROUP_EXTERIOR_CELL_BLOCK,
    GROUP_EXTERIOR_CELL_SUBBLOCK,
})

# Record types
REC_TES4 = b"TES4"
REC_GRUP = b"GRUP"
REC_WRLD = b"WRLD"
REC_CELL = b"CELL"

# Top-level groups the decoder descends into
DECODED_TOP_GROUPS = frozenset({REC_WRLD, REC_CELL})

# Subrecord types
SUB_HEDR = "HEDR"   # Header: version, record count, next object id
SUB_CNAM = "CNAM"   # Author
SUB_SNAM = "SNAM"   # Description
SUB_MAST = "MAST"   # Master filename
SUB_DATA = "DATA"   # Master file size (TES4) / cell flags (CELL)
SUB_EDID = "EDID"   # Editor ID
SUB_FULL = "FULL"   # Display name
SUB_XCLC = "XCLC"   # Exterior cell grid coordinates
SUB_XXXX = "XXXX"   # Size override for the following subrecord

# CELL DATA flags
CELL_FLAG_INTERIOR = 0x0001

# Plugin extensions recognised inside archives
PLUGIN_EXTENSIONS = (".esp", ".esm", ".esl")
