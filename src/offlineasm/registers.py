"""
Register Naming Tables
======================

Logical register name -> physical register spelling, per architecture.

The macro-assembly source is written against a fixed set of logical
registers:

    t0-t12      temporaries
    a0-a7       argument registers (alias temporaries)
    r0, r1      return value registers (alias temporaries)
    ws0-ws3     wasm scratch registers
    wa0-wa7     wasm argument registers
    cfr         call frame register
    csr0-csr10  callee-saved registers
    sp, lr      stack pointer and link register
    ft0-ft7     floating point temporaries
    fa0-fa7     floating point arguments
    csfr0-csfr7 callee-saved floating point registers
    v0-v7       vector registers

A logical register that an architecture does not provide is simply
absent from its table. The asm backends report such a register as an
emission error; the C++ backend keeps logical names and needs no table.
"""


def _range(prefix: str, count: int, physical: str, start: int = 0) -> dict[str, str]:
    return {f"{prefix}{i}": f"{physical}{start + i}" for i in range(count)}


# =============================================================================
# ARM64 / ARM64E
# =============================================================================
# x16 and x17 are reserved as the backend's address and immediate scratch
# registers.

ARM64_REGISTERS: dict[str, str] = {
    **_range("t", 13, "x"),
    "cfr": "x29",
    **_range("csr", 10, "x", start=19),
    "sp": "sp",
    "lr": "lr",
    "ws0": "x9",
    "ws1": "x10",
    "ws2": "x11",
    "ws3": "x12",
    **_range("a", 8, "x"),
    **_range("wa", 8, "x"),
    "r0": "x0",
    "r1": "x1",
    **_range("ft", 8, "d"),
    **_range("fa", 8, "d"),
    **_range("csfr", 8, "d", start=8),
    **_range("v", 8, "v", start=16),
}


# =============================================================================
# X86_64 (System V)
# =============================================================================
# %r11 is reserved as the backend's immediate scratch register.

X86_64_REGISTERS: dict[str, str] = {
    "t0": "%rax",
    "t1": "%rsi",
    "t2": "%rdx",
    "t3": "%rcx",
    "t4": "%r8",
    "t5": "%r10",
    "t6": "%rdi",
    "t7": "%r9",
    "cfr": "%rbp",
    "csr0": "%rbx",
    "csr1": "%r12",
    "csr2": "%r13",
    "csr3": "%r14",
    "csr4": "%r15",
    "sp": "%rsp",
    "ws0": "%r10",
    "ws1": "%r9",
    "a0": "%rdi",
    "a1": "%rsi",
    "a2": "%rdx",
    "a3": "%rcx",
    "a4": "%r8",
    "a5": "%r9",
    "wa0": "%rdi",
    "wa1": "%rsi",
    "wa2": "%rdx",
    "wa3": "%rcx",
    "wa4": "%r8",
    "wa5": "%r9",
    "r0": "%rax",
    "r1": "%rdx",
    **_range("ft", 8, "%xmm"),
    **_range("fa", 8, "%xmm"),
    **_range("v", 8, "%xmm", start=8),
}


# =============================================================================
# RISCV64
# =============================================================================
# x30 and x31 are reserved as the backend's scratch registers.

RISCV64_REGISTERS: dict[str, str] = {
    **_range("t", 8, "x", start=10),
    "t8": "x5",
    "cfr": "x8",
    "csr0": "x9",
    **{f"csr{i}": f"x{17 + i}" for i in range(1, 11)},
    "sp": "sp",
    "lr": "ra",
    "ws0": "x6",
    "ws1": "x7",
    "ws2": "x28",
    "ws3": "x29",
    **_range("a", 8, "x", start=10),
    **_range("wa", 8, "x", start=10),
    "r0": "x10",
    "r1": "x11",
    **_range("ft", 8, "f"),
    **_range("fa", 8, "f", start=10),
    **{f"csfr{i}": f"f{18 + i}" for i in range(8)},
}


# =============================================================================
# ARMv7 (Thumb-2)
# =============================================================================
# r4 is reserved as the backend's immediate scratch register.

ARMV7_REGISTERS: dict[str, str] = {
    **_range("t", 4, "r"),
    "t4": "r8",
    "t5": "r9",
    "t6": "r10",
    "t7": "r12",
    "cfr": "r7",
    "csr0": "r11",
    "csr1": "r6",
    "sp": "sp",
    "lr": "lr",
    **_range("a", 4, "r"),
    **_range("wa", 4, "r"),
    "r0": "r0",
    "r1": "r1",
    **_range("ft", 8, "d"),
    **_range("fa", 4, "d"),
    **_range("csfr", 8, "d", start=8),
}


REGISTER_TABLES: dict[str, dict[str, str]] = {
    "ARM64": ARM64_REGISTERS,
    "ARM64E": ARM64_REGISTERS,
    "X86_64": X86_64_REGISTERS,
    "RISCV64": RISCV64_REGISTERS,
    "ARMv7": ARMV7_REGISTERS,
    "C_LOOP": {},
}


def register_table(architecture: str) -> dict[str, str]:
    """Return a copy of the naming table for `architecture`."""
    return dict(REGISTER_TABLES[architecture])
