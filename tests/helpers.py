from aavetrace.core.dto import ZERO_ADDRESS, TransferEvent


def addr(ch: str) -> str:
    """Deterministic lowercase test address, e.g. addr("a") -> 0xaaaa...aaaa."""
    return "0x" + ch * 40


TOKEN = addr("7")


def transfer(frm: str, to: str, value: int, block: int = 1, log_index: int = 0) -> TransferEvent:
    return TransferEvent(
        from_address=frm,
        to_address=to,
        value=value,
        block_number=block,
        log_index=log_index,
        tx_hash=f"0x{block:x}{log_index:x}",
    )


def mint(to: str, value: int, block: int = 1, log_index: int = 0) -> TransferEvent:
    return transfer(ZERO_ADDRESS, to, value, block, log_index)


def burn(frm: str, value: int, block: int = 1, log_index: int = 0) -> TransferEvent:
    return transfer(frm, ZERO_ADDRESS, value, block, log_index)
