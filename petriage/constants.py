from __future__ import annotations

from enum import IntEnum, IntFlag
from typing import Dict, List

IMAGE_DOS_SIGNATURE = b"MZ"
IMAGE_DOS_ZM_SIGNATURE = b"ZM"
IMAGE_NT_SIGNATURE = b"PE\x00\x00"

# Two-byte prefixes of non-PE executables found at e_lfanew.
LEGACY_SIGNATURES: Dict[bytes, str] = {
    b"NE": "OS/2 (NE) executable",
    b"LE": "OS/2 linear (LE) executable",
    b"LX": "VxD (LX) executable",
    b"VZ": "Terse executable (TE)",
}

PE32_MAGIC = 0x10B
PE32P_MAGIC = 0x20B
ROM_MAGIC = 0x107

DOS_HEADER_SIZE = 64
FILE_HEADER_SIZE = 20
SECTION_HEADER_SIZE = 40
COFF_SYMBOL_SIZE = 18

# CheckSum sits at the same offset in PE32 and PE32+ optional headers.
OPTIONAL_HEADER_CHECKSUM_OFFSET = 64

SIZEOF_OPTIONAL_HEADER32 = 0xE0
SIZEOF_OPTIONAL_HEADER64 = 0xF0

NUMBER_OF_DIRECTORY_ENTRIES = 16


class MachineType(IntEnum):
    UNKNOWN = 0x0
    AM33 = 0x1D3
    AMD64 = 0x8664
    ARM = 0x1C0
    ARM64 = 0xAA64
    ARM64EC = 0xA641
    ARM64X = 0xA64E
    ARMNT = 0x1C4
    EBC = 0xEBC
    I386 = 0x14C
    IA64 = 0x200
    LOONGARCH32 = 0x6232
    LOONGARCH64 = 0x6264
    M32R = 0x9041
    MIPS16 = 0x266
    MIPSFPU = 0x366
    MIPSFPU16 = 0x466
    POWERPC = 0x1F0
    POWERPCFP = 0x1F1
    R4000 = 0x166
    RISCV32 = 0x5032
    RISCV64 = 0x5064
    RISCV128 = 0x5128
    SH3 = 0x1A2
    SH3DSP = 0x1A3
    SH4 = 0x1A6
    SH5 = 0x1A8
    THUMB = 0x1C2
    WCEMIPSV2 = 0x169


_MACHINE_NAMES: Dict[int, str] = {
    MachineType.UNKNOWN: "Unknown",
    MachineType.AM33: "Matsushita AM33",
    MachineType.AMD64: "x64",
    MachineType.ARM: "ARM little endian",
    MachineType.ARM64: "ARM64 little endian",
    MachineType.ARM64EC: "ARM64EC (Emulation Compatible)",
    MachineType.ARM64X: "ARM64X (dual-architecture)",
    MachineType.ARMNT: "ARM Thumb-2 little endian",
    MachineType.EBC: "EFI byte code",
    MachineType.I386: "Intel 386 or later / compatible processors",
    MachineType.IA64: "Intel Itanium processor family",
    MachineType.LOONGARCH32: "LoongArch 32-bit",
    MachineType.LOONGARCH64: "LoongArch 64-bit",
    MachineType.M32R: "Mitsubishi M32R little endian",
    MachineType.MIPS16: "MIPS16",
    MachineType.MIPSFPU: "MIPS with FPU",
    MachineType.MIPSFPU16: "MIPS16 with FPU",
    MachineType.POWERPC: "Power PC little endian",
    MachineType.POWERPCFP: "Power PC with floating point support",
    MachineType.R4000: "MIPS little endian",
    MachineType.RISCV32: "RISC-V 32-bit address space",
    MachineType.RISCV64: "RISC-V 64-bit address space",
    MachineType.RISCV128: "RISC-V 128-bit address space",
    MachineType.SH3: "Hitachi SH3",
    MachineType.SH3DSP: "Hitachi SH3 DSP",
    MachineType.SH4: "Hitachi SH4",
    MachineType.SH5: "Hitachi SH5",
    MachineType.THUMB: "Thumb",
    MachineType.WCEMIPSV2: "MIPS little-endian WCE v2",
}

ARM64_HYBRID_MACHINES = frozenset({MachineType.ARM64EC, MachineType.ARM64X})


def machine_name(machine: int) -> str:
    return _MACHINE_NAMES.get(machine, "?")


class FileCharacteristics(IntFlag):
    RELOCS_STRIPPED = 0x0001
    EXECUTABLE_IMAGE = 0x0002
    LINE_NUMS_STRIPPED = 0x0004
    LOCAL_SYMS_STRIPPED = 0x0008
    AGGRESSIVE_WS_TRIM = 0x0010
    LARGE_ADDRESS_AWARE = 0x0020
    BYTES_REVERSED_LO = 0x0080
    MACHINE_32BIT = 0x0100
    DEBUG_STRIPPED = 0x0200
    REMOVABLE_RUN_FROM_SWAP = 0x0400
    NET_RUN_FROM_SWAP = 0x0800
    SYSTEM = 0x1000
    DLL = 0x2000
    UP_SYSTEM_ONLY = 0x4000
    BYTES_REVERSED_HI = 0x8000


_FILE_CHARACTERISTICS_NAMES: Dict[int, str] = {
    FileCharacteristics.RELOCS_STRIPPED: "RelocsStripped",
    FileCharacteristics.EXECUTABLE_IMAGE: "ExecutableImage",
    FileCharacteristics.LINE_NUMS_STRIPPED: "LineNumsStripped",
    FileCharacteristics.LOCAL_SYMS_STRIPPED: "LocalSymsStripped",
    FileCharacteristics.AGGRESSIVE_WS_TRIM: "AggressiveWsTrim",
    FileCharacteristics.LARGE_ADDRESS_AWARE: "LargeAddressAware",
    FileCharacteristics.BYTES_REVERSED_LO: "BytesReservedLow",
    FileCharacteristics.MACHINE_32BIT: "32BitMachine",
    FileCharacteristics.DEBUG_STRIPPED: "DebugStripped",
    FileCharacteristics.REMOVABLE_RUN_FROM_SWAP: "RemovableRunFromSwap",
    FileCharacteristics.NET_RUN_FROM_SWAP: "NetRunFromSwap",
    FileCharacteristics.SYSTEM: "FileSystem",
    FileCharacteristics.DLL: "DLL",
    FileCharacteristics.UP_SYSTEM_ONLY: "UpSystemOnly",
    FileCharacteristics.BYTES_REVERSED_HI: "BytesReservedHigh",
}


class DllCharacteristics(IntFlag):
    HIGH_ENTROPY_VA = 0x0020
    DYNAMIC_BASE = 0x0040
    FORCE_INTEGRITY = 0x0080
    NX_COMPAT = 0x0100
    NO_ISOLATION = 0x0200
    NO_SEH = 0x0400
    NO_BIND = 0x0800
    APPCONTAINER = 0x1000
    WDM_DRIVER = 0x2000
    GUARD_CF = 0x4000
    TERMINAL_SERVER_AWARE = 0x8000


_DLL_CHARACTERISTICS_NAMES: Dict[int, str] = {
    DllCharacteristics.HIGH_ENTROPY_VA: "HighEntropyVA",
    DllCharacteristics.DYNAMIC_BASE: "DynamicBase",
    DllCharacteristics.FORCE_INTEGRITY: "ForceIntegrity",
    DllCharacteristics.NX_COMPAT: "NXCompact",
    DllCharacteristics.NO_ISOLATION: "NoIsolation",
    DllCharacteristics.NO_SEH: "NoSEH",
    DllCharacteristics.NO_BIND: "NoBind",
    DllCharacteristics.APPCONTAINER: "AppContainer",
    DllCharacteristics.WDM_DRIVER: "WdmDriver",
    DllCharacteristics.GUARD_CF: "GuardCF",
    DllCharacteristics.TERMINAL_SERVER_AWARE: "TerminalServiceAware",
}


def _flag_names(value: int, names: Dict[int, str]) -> List[str]:
    return [name for bit, name in names.items() if value & bit]


def file_characteristics_names(value: int) -> List[str]:
    return _flag_names(value, _FILE_CHARACTERISTICS_NAMES)


def dll_characteristics_names(value: int) -> List[str]:
    return _flag_names(value, _DLL_CHARACTERISTICS_NAMES)


_SUBSYSTEM_NAMES: Dict[int, str] = {
    0: "Unknown",
    1: "Native",
    2: "Windows GUI",
    3: "Windows CUI",
    5: "OS/2 character",
    7: "POSIX character",
    8: "Native Win9x driver",
    9: "Windows CE GUI",
    10: "EFI Application",
    11: "EFI Boot Service Driver",
    12: "EFI Runtime Driver",
    13: "EFI ROM image",
    14: "XBOX",
    16: "Windows boot application",
}


def subsystem_name(value: int) -> str:
    return _SUBSYSTEM_NAMES.get(value, "?")


class SectionCharacteristics(IntFlag):
    CNT_CODE = 0x00000020
    CNT_INITIALIZED_DATA = 0x00000040
    CNT_UNINITIALIZED_DATA = 0x00000080
    LNK_INFO = 0x00000200
    LNK_REMOVE = 0x00000800
    LNK_COMDAT = 0x00001000
    GPREL = 0x00008000
    LNK_NRELOC_OVFL = 0x01000000
    MEM_DISCARDABLE = 0x02000000
    MEM_NOT_CACHED = 0x04000000
    MEM_NOT_PAGED = 0x08000000
    MEM_SHARED = 0x10000000
    MEM_EXECUTE = 0x20000000
    MEM_READ = 0x40000000
    MEM_WRITE = 0x80000000


class DirectoryEntry(IntEnum):
    EXPORT = 0
    IMPORT = 1
    RESOURCE = 2
    EXCEPTION = 3
    SECURITY = 4
    BASERELOC = 5
    DEBUG = 6
    ARCHITECTURE = 7
    GLOBALPTR = 8
    TLS = 9
    LOAD_CONFIG = 10
    BOUND_IMPORT = 11
    IAT = 12
    DELAY_IMPORT = 13
    CLR = 14
    RESERVED = 15


_DEBUG_TYPE_NAMES: Dict[int, str] = {
    0: "Unknown",
    1: "COFF",
    2: "CodeView",
    3: "FPO",
    4: "Misc",
    5: "Exception",
    6: "Fixup",
    7: "OMAP to source",
    8: "OMAP from source",
    9: "Borland",
    10: "Reserved",
    11: "CLSID",
    12: "VC feature",
    13: "POGO",
    14: "ILTCG",
    15: "MPX",
    16: "Repro",
    20: "Extended DLL characteristics",
}

IMAGE_DEBUG_TYPE_CODEVIEW = 2


def debug_type_name(value: int) -> str:
    return _DEBUG_TYPE_NAMES.get(value, "?")


_RELOC_TYPE_NAMES: Dict[int, str] = {
    0: "ABSOLUTE",
    1: "HIGH",
    2: "LOW",
    3: "HIGHLOW",
    4: "HIGHADJ",
    5: "MACHINE_SPECIFIC_5",
    7: "MACHINE_SPECIFIC_7",
    8: "MACHINE_SPECIFIC_8",
    9: "MACHINE_SPECIFIC_9",
    10: "DIR64",
}


def reloc_type_name(value: int) -> str:
    return _RELOC_TYPE_NAMES.get(value, "?")


RT_VERSION = 16

_RESOURCE_TYPE_NAMES: Dict[int, str] = {
    1: "RT_CURSOR",
    2: "RT_BITMAP",
    3: "RT_ICON",
    4: "RT_MENU",
    5: "RT_DIALOG",
    6: "RT_STRING",
    7: "RT_FONTDIR",
    8: "RT_FONT",
    9: "RT_ACCELERATOR",
    10: "RT_RCDATA",
    11: "RT_MESSAGETABLE",
    12: "RT_GROUP_CURSOR",
    14: "RT_GROUP_ICON",
    16: "RT_VERSION",
    17: "RT_DLGINCLUDE",
    19: "RT_PLUGPLAY",
    20: "RT_VXD",
    21: "RT_ANICURSOR",
    22: "RT_ANIICON",
    23: "RT_HTML",
    24: "RT_MANIFEST",
}


def resource_type_name(value: int) -> str:
    return _RESOURCE_TYPE_NAMES.get(value, "?")


_CERTIFICATE_TYPE_NAMES: Dict[int, str] = {
    1: "X509",
    2: "PKCS7 SignedData",
    3: "Reserved",
    4: "TS stack signed",
}


def certificate_type_name(value: int) -> str:
    return _CERTIFICATE_TYPE_NAMES.get(value, "?")
