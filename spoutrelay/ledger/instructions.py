"""
spoutrelay/ledger/instructions.py

Instruction builders for every transaction the relayer submits.

Account order in each builder is fixed by the external program's
instruction interface. Do not reorder.

Order program (Anchor encoding, layouts in spoutrelay.core.layouts):
    data = SHA-256("global:" + name)[:8] || borsh(args)

    mint(recipient: Pubkey, amount: u64)
        issuer (signer, writable), config, mint (writable), program_authority,
        recipient_token_account (writable), recipient, schema_account,
        credential_account, attestation_account, sas_program, token_program

    burn(amount: u64)
        issuer (signer, writable), config, mint (writable), program_authority,
        owner_token_account (writable), schema_account, credential_account,
        attestation_account, sas_program, token_program

Associated token program:
    CreateIdempotent  data = [1]
        payer (signer, writable), associated_account (writable), owner, mint,
        system_program, token_program

Token program (built by spl.token.instructions.transfer_checked):
    TransferChecked   data = [12] || u64 amount || u8 decimals
        source (writable), mint, destination (writable), owner (signer)
"""

from dataclasses import dataclass

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from spl.token.instructions import TransferCheckedParams, transfer_checked

from spoutrelay.core.address import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    SYSTEM_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
)
from spoutrelay.core.layouts import BURN_ARGS, MINT_ARGS, instruction_discriminator
from spoutrelay.core.models import U64_MAX

CREATE_IDEMPOTENT = 1


def _amount(value: int) -> int:
    if not 0 <= value <= U64_MAX:
        raise ValueError(f"amount out of u64 range: {value}")
    return value


def _ro(key: Pubkey) -> AccountMeta:
    return AccountMeta(key, is_signer=False, is_writable=False)


def _rw(key: Pubkey) -> AccountMeta:
    return AccountMeta(key, is_signer=False, is_writable=True)


def _payer(key: Pubkey) -> AccountMeta:
    return AccountMeta(key, is_signer=True, is_writable=True)


@dataclass(frozen=True)
class KycAccounts:
    """The attestation triple plus the program that owns it."""
    schema:              Pubkey
    credential:          Pubkey
    attestation:         Pubkey
    attestation_program: Pubkey


def mint_instruction(
    program_id:              Pubkey,
    issuer:                  Pubkey,
    config:                  Pubkey,
    mint:                    Pubkey,
    program_authority:       Pubkey,
    recipient_token_account: Pubkey,
    recipient:               Pubkey,
    kyc:                     KycAccounts,
    amount:                  int,
    token_program:           Pubkey = TOKEN_PROGRAM_ID,
) -> Instruction:
    data = instruction_discriminator("mint") + MINT_ARGS.build(
        {"recipient": recipient, "amount": _amount(amount)}
    )
    return Instruction(
        program_id=program_id,
        accounts=[
            _payer(issuer),
            _ro(config),
            _rw(mint),
            _ro(program_authority),
            _rw(recipient_token_account),
            _ro(recipient),
            _ro(kyc.schema),
            _ro(kyc.credential),
            _ro(kyc.attestation),
            _ro(kyc.attestation_program),
            _ro(token_program),
        ],
        data=data,
    )


def burn_instruction(
    program_id:          Pubkey,
    issuer:              Pubkey,
    config:              Pubkey,
    mint:                Pubkey,
    program_authority:   Pubkey,
    owner_token_account: Pubkey,
    kyc:                 KycAccounts,
    amount:              int,
    token_program:       Pubkey = TOKEN_PROGRAM_ID,
) -> Instruction:
    data = instruction_discriminator("burn") + BURN_ARGS.build({"amount": _amount(amount)})
    return Instruction(
        program_id=program_id,
        accounts=[
            _payer(issuer),
            _ro(config),
            _rw(mint),
            _ro(program_authority),
            _rw(owner_token_account),
            _ro(kyc.schema),
            _ro(kyc.credential),
            _ro(kyc.attestation),
            _ro(kyc.attestation_program),
            _ro(token_program),
        ],
        data=data,
    )


def create_associated_account_idempotent(
    payer:              Pubkey,
    associated_account: Pubkey,
    owner:              Pubkey,
    mint:               Pubkey,
    token_program:      Pubkey = TOKEN_PROGRAM_ID,
) -> Instruction:
    return Instruction(
        program_id=ASSOCIATED_TOKEN_PROGRAM_ID,
        accounts=[
            _payer(payer),
            _rw(associated_account),
            _ro(owner),
            _ro(mint),
            _ro(SYSTEM_PROGRAM_ID),
            _ro(token_program),
        ],
        data=bytes([CREATE_IDEMPOTENT]),
    )


def transfer_checked_instruction(
    source:        Pubkey,
    mint:          Pubkey,
    destination:   Pubkey,
    owner:         Pubkey,
    amount:        int,
    decimals:      int,
    token_program: Pubkey = TOKEN_PROGRAM_ID,
) -> Instruction:
    if not 0 <= decimals <= 255:
        raise ValueError(f"decimals out of range: {decimals}")
    return transfer_checked(TransferCheckedParams(
        program_id= token_program,
        source=     source,
        mint=       mint,
        dest=       destination,
        owner=      owner,
        amount=     _amount(amount),
        decimals=   decimals,
    ))
