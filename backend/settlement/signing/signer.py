"""
Authorization Signer.

Builds the EIP-712 payload for a mint, burn or permit authorization, reads
the matching nonce from the token contract and signs with a custodial key.
"""

import logging
from typing import TYPE_CHECKING, Any, Dict

from eth_account import Account
from eth_account.signers.local import LocalAccount

from settlement.core.constants import NonceKind
from settlement.core.exceptions import ValidationError

from .typed_data import SCHEMAS, SignedAuthorization, build_domain, build_typed_data

if TYPE_CHECKING:
    from settlement.chain.gateway import ChainGateway
    from settlement.chain.profiles import ChainProfileConfig

logger = logging.getLogger(__name__)


class AuthorizationSigner:
    """
    Signs authorizations for one token contract at a time.

    The nonce is read and then signed with no reservation in between:
    callers that may sign concurrently for the same signer and nonce kind
    must hold the matching KeyedSerializer key from before ``sign`` until
    the authorization is consumed on chain.
    """

    def __init__(self, gateway: "ChainGateway"):
        self.gateway = gateway

    async def sign(
        self,
        kind: NonceKind,
        wallet: LocalAccount,
        params: Dict[str, Any],
        deadline: int,
        profile: "ChainProfileConfig",
        token_address: str,
    ) -> SignedAuthorization:
        """
        Sign one authorization.

        Args:
            kind: Which authorization to sign
            wallet: Unlocked custodial account that signs
            params: Subject and amount fields (``to``/``amount`` for mint,
                ``from``/``amount`` for burn, ``spender``/``value`` for permit)
            deadline: Unix time after which the contract rejects the signature
            profile: Chain the token lives on
            token_address: Verifying contract

        Returns:
            SignedAuthorization with v, r, s, nonce and deadline

        Raises:
            ValidationError: If params are missing a schema field
            ChainError: If the token name or nonce cannot be read
        """
        signer_field = SCHEMAS[kind]["signer_field"]
        message = dict(params)
        message[signer_field] = wallet.address
        message["deadline"] = int(deadline)

        token_name = await self.gateway.token_name(profile, token_address)
        nonce = await self.gateway.nonce(profile, token_address, kind, wallet.address)
        message["nonce"] = nonce

        try:
            typed_data = build_typed_data(
                kind,
                build_domain(token_name, profile.chain_id, token_address),
                message,
            )
        except KeyError as e:
            raise ValidationError(f"Missing {kind.value} authorization field: {e.args[0]}")

        signed = Account.sign_typed_data(wallet.key, full_message=typed_data)

        logger.debug(f"Signed {kind.value} authorization for {wallet.address} with nonce {nonce}")

        return SignedAuthorization(
            kind=kind,
            signer=wallet.address,
            v=signed.v,
            r="0x" + signed.r.to_bytes(32, "big").hex(),
            s="0x" + signed.s.to_bytes(32, "big").hex(),
            nonce=nonce,
            deadline=int(deadline),
            signature="0x" + bytes(signed.signature).hex(),
        )
