from typing import NamedTuple
from hathor import (
    Address,
    Blueprint,
    Context,
    NCDepositAction,
    NCWithdrawalAction,
    NCFail,
    TokenUid,
    export,
    public,
    view,
)

#
# === ATOMIC SWAP ESCROW BLUEPRINT ===
#
# Two-party escrow for swapping amounts of a single token.
#
# Features:
# - Initiator locks tokens by attaching a deposit to propose()
# - Exactly one counterparty may fulfill, attaching exactly the required amount
# - Initiator may withdraw (reclaim) the locked tokens before fulfillment
# - Reentrancy guard around every operation that moves custody
# - Pull-based payouts: transfers credit balances that parties claim()
# - Audit events emitted for every proposal, fulfillment and withdrawal
#
# === ID SPACE ===
#

MAX_SWAP_IDS = 2**32 - 1   # 32-bit counter, never wraps


#
# === VIEW RETURN TYPES (JSON-friendly) ===
#

class SwapDetails(NamedTuple):
    exists: bool
    initiator: str          # base58 string or "" if not found
    counterparty: str       # base58 string or "" if not found
    initiator_amount: int
    required_amount: int


class ConfigView(NamedTuple):
    token_uid: str          # token uid hex
    swap_id_capacity: int


class CountersView(NamedTuple):
    total_proposed: int
    total_fulfilled: int
    total_withdrawn: int
    count_live: int


#
# === EVENTS ===
#

class EscrowProposed(NamedTuple):
    swap_id: int
    initiator: str
    counterparty: str
    initiator_amount: int
    required_amount: int


class EscrowFulfilled(NamedTuple):
    swap_id: int


class EscrowWithdrawn(NamedTuple):
    swap_id: int


def encode_event(event: NamedTuple) -> bytes:
    """Render an event as `Name|field=value|...` in field declaration order."""
    parts = [type(event).__name__]
    for name, value in zip(event._fields, event):
        parts.append(f"{name}={value}")
    return "|".join(parts).encode("utf-8")


#
# === CUSTOM FAIL TYPES ===
#

class EscrowError(NCFail):
    """Base class for escrow-related failures."""


class SwapNotFound(EscrowError):
    """No live agreement exists under the given swap id."""


class NotAuthorized(EscrowError):
    """Caller is not the party required for this operation."""


class InsufficientInitiatorBalance(EscrowError):
    """Proposal was made without attaching any value."""


class InsufficientCounterpartyBalance(EscrowError):
    """Fulfillment value does not match the required amount, or a transfer failed."""


class SwapIdOverflow(EscrowError):
    """The swap id space is exhausted."""


class Reentrancy(EscrowError):
    """A guarded operation was entered while another one was running."""


class InvalidConfig(EscrowError):
    """Invalid initialization or proposal parameters."""


class InvalidActions(EscrowError):
    """Invalid deposit/withdrawal actions."""


@export
class AtomicSwapEscrow(Blueprint):
    """
    Escrow registry for 1-to-1 swaps of a single token.

    Identity model:
      - initiator: caller identity at propose()
      - counterparty: named by the initiator; the only identity allowed to fulfill()

    Custody model:
      - the deposit attached to propose() is held until fulfill() or withdraw()
      - fulfill() takes the counterparty's deposit, then credits both sides
      - withdraw() credits the initiator with the original deposit
      - credited balances leave the contract through claim()

    Lifecycle per swap id: nonexistent -> live (propose) -> nonexistent
    (fulfill or withdraw). Ids are never reused.
    """

    # === Config ===
    token_uid: TokenUid
    swap_id_capacity: int

    # === Per-swap state (all four entries exist iff the swap is live) ===
    initiators: dict[int, Address]
    counterparties: dict[int, Address]
    initiator_amounts: dict[int, int]
    required_amounts: dict[int, int]

    next_swap_id: int
    reentrancy_guard: bool

    # === Custody and payouts ===
    custody: int
    balances: dict[Address, int]

    # === Counters ===
    total_proposed: int
    total_fulfilled: int
    total_withdrawn: int

    #
    # === INITIALIZE ===
    #

    @public
    def initialize(self, ctx: Context, token_uid: TokenUid, swap_id_capacity: int) -> None:
        """
        Creates an empty registry escrowing `token_uid`.

        swap_id_capacity == 0 selects MAX_SWAP_IDS.
        """
        if swap_id_capacity == 0:
            swap_id_capacity = MAX_SWAP_IDS
        if swap_id_capacity < 0 or swap_id_capacity > MAX_SWAP_IDS:
            raise InvalidConfig("swap_id_capacity out of bounds")

        self.token_uid = token_uid
        self.swap_id_capacity = swap_id_capacity

        self.initiators = {}
        self.counterparties = {}
        self.initiator_amounts = {}
        self.required_amounts = {}

        self.next_swap_id = 0
        self.reentrancy_guard = False

        self.custody = 0
        self.balances = {}

        self.total_proposed = 0
        self.total_fulfilled = 0
        self.total_withdrawn = 0

    #
    # === INTERNAL HELPERS ===
    #

    def _get_caller_id(self, ctx: Context) -> Address:
        """Returns the caller identity (CallerID)."""
        caller = ctx.get_caller_address()
        if caller is None:
            raise NotAuthorized("Caller identity is not available")
        return caller

    def _get_transferred_value(self, ctx: Context) -> int:
        """Amount of the registry token deposited with this call (0 if none)."""
        if len(ctx.actions) == 0:
            return 0
        if set(ctx.actions.keys()) != {self.token_uid}:
            raise InvalidActions("Only the registry token can be attached")

        action = ctx.get_single_action(self.token_uid)
        if not isinstance(action, NCDepositAction):
            raise InvalidActions("Attached value must be a deposit")
        return action.amount

    def _transfer(self, ctx: Context, recipient: Address, amount: int) -> None:
        """Move `amount` out of custody into the recipient's claimable balance."""
        if amount > self.custody:
            raise InsufficientCounterpartyBalance("Transfer exceeds custodial funds")
        self.custody -= amount
        self.balances[recipient] = self.balances.get(recipient, 0) + amount

    def _emit(self, event: NamedTuple) -> None:
        self.syscall.emit_event(encode_event(event))

    def _enter_reentrancy_guard(self) -> None:
        if self.reentrancy_guard:
            raise Reentrancy("Another escrow operation is in progress")
        self.reentrancy_guard = True

    def _exit_reentrancy_guard(self) -> None:
        self.reentrancy_guard = False

    def _assert_exists(self, swap_id: int) -> None:
        if swap_id not in self.initiators:
            raise SwapNotFound("Swap ID does not exist")

    def _remove_swap(self, swap_id: int) -> None:
        del self.initiators[swap_id]
        del self.counterparties[swap_id]
        del self.initiator_amounts[swap_id]
        del self.required_amounts[swap_id]

    #
    # === PROPOSE ===
    #

    @public(allow_deposit=True)
    def propose(self, ctx: Context, counterparty: Address, required_amount: int) -> int:
        """
        Lock the attached deposit and offer it to `counterparty` for `required_amount`.

        Not guarded: nothing leaves custody before the new swap is stored.
        """
        initiator = self._get_caller_id(ctx)

        if required_amount < 0:
            raise InvalidConfig("Required amount must be >= 0")

        initiator_amount = self._get_transferred_value(ctx)
        if initiator_amount == 0:
            raise InsufficientInitiatorBalance("A deposit is required to propose a swap")

        swap_id = self.next_swap_id
        if swap_id >= self.swap_id_capacity:
            raise SwapIdOverflow("No swap ids left")

        self.initiators[swap_id] = initiator
        self.counterparties[swap_id] = counterparty
        self.initiator_amounts[swap_id] = initiator_amount
        self.required_amounts[swap_id] = required_amount

        self.next_swap_id = swap_id + 1
        self.custody += initiator_amount
        self.total_proposed += 1

        self._emit(EscrowProposed(
            swap_id=swap_id,
            initiator=str(initiator),
            counterparty=str(counterparty),
            initiator_amount=initiator_amount,
            required_amount=required_amount,
        ))
        return swap_id

    #
    # === FULFILL (COUNTERPARTY-ONLY) ===
    #

    @public(allow_deposit=True)
    def fulfill(self, ctx: Context, swap_id: int) -> None:
        """Counterparty pays the required amount; both sides are credited."""
        self._enter_reentrancy_guard()
        try:
            self._assert_exists(swap_id)

            caller = self._get_caller_id(ctx)
            initiator = self.initiators[swap_id]
            counterparty = self.counterparties[swap_id]
            if caller != counterparty:
                raise NotAuthorized("Only the counterparty can fulfill this swap")

            transferred = self._get_transferred_value(ctx)
            if transferred != self.required_amounts[swap_id]:
                raise InsufficientCounterpartyBalance("Deposit must match the required amount")

            self.custody += transferred
            self._transfer(ctx, initiator, transferred)
            self._transfer(ctx, counterparty, self.initiator_amounts[swap_id])

            # Removal only after both transfers went through.
            self._remove_swap(swap_id)
            self.total_fulfilled += 1

            self._emit(EscrowFulfilled(swap_id=swap_id))
        finally:
            self._exit_reentrancy_guard()

    #
    # === WITHDRAW (INITIATOR-ONLY) ===
    #

    @public
    def withdraw(self, ctx: Context, swap_id: int) -> None:
        """Initiator reclaims the locked deposit of a swap nobody fulfilled yet."""
        self._enter_reentrancy_guard()
        try:
            self._assert_exists(swap_id)

            caller = self._get_caller_id(ctx)
            initiator = self.initiators[swap_id]
            if caller != initiator:
                raise NotAuthorized("Only the initiator can withdraw this swap")

            self._transfer(ctx, initiator, self.initiator_amounts[swap_id])

            self._remove_swap(swap_id)
            self.total_withdrawn += 1

            self._emit(EscrowWithdrawn(swap_id=swap_id))
        finally:
            self._exit_reentrancy_guard()

    #
    # === CLAIM (PAYOUTS) ===
    #

    @public(allow_withdrawal=True)
    def claim(self, ctx: Context) -> None:
        """
        Collect credited balance.

        The call must carry exactly one withdrawal of the registry token, for
        at most the caller's credited balance.
        """
        caller = self._get_caller_id(ctx)

        if set(ctx.actions.keys()) != {self.token_uid}:
            raise InvalidActions("Claim must withdraw exactly the registry token")

        action = ctx.get_single_action(self.token_uid)
        if not isinstance(action, NCWithdrawalAction):
            raise InvalidActions("Expected a withdrawal action")

        balance = self.balances.get(caller, 0)
        if action.amount <= 0:
            raise InvalidActions("Withdrawal amount must be > 0")
        if action.amount > balance:
            raise InvalidActions("Withdrawal amount exceeds credited balance")

        remaining = balance - action.amount
        if remaining == 0:
            del self.balances[caller]
        else:
            self.balances[caller] = remaining

    #
    # === VIEWS ===
    #

    @view
    def get_config(self) -> ConfigView:
        return ConfigView(
            token_uid=self.token_uid.hex(),
            swap_id_capacity=self.swap_id_capacity,
        )

    @view
    def get_swap(self, swap_id: int) -> SwapDetails:
        """Safe, JSON-friendly view; `exists` is False for unknown or closed ids."""
        initiator = self.initiators.get(swap_id)
        if initiator is None:
            return SwapDetails(
                exists=False,
                initiator="",
                counterparty="",
                initiator_amount=0,
                required_amount=0,
            )

        return SwapDetails(
            exists=True,
            initiator=str(initiator),
            counterparty=str(self.counterparties[swap_id]),
            initiator_amount=self.initiator_amounts[swap_id],
            required_amount=self.required_amounts[swap_id],
        )

    @view
    def get_swap_exists(self, swap_id: int) -> bool:
        return swap_id in self.initiators

    @view
    def get_next_swap_id(self) -> int:
        return self.next_swap_id

    @view
    def get_balance(self, address: Address) -> int:
        """Credited amount `address` can still claim."""
        return self.balances.get(address, 0)

    @view
    def get_custody(self) -> int:
        return self.custody

    @view
    def is_busy(self) -> bool:
        return self.reentrancy_guard

    @view
    def get_counters(self) -> CountersView:
        return CountersView(
            total_proposed=self.total_proposed,
            total_fulfilled=self.total_fulfilled,
            total_withdrawn=self.total_withdrawn,
            count_live=self.total_proposed - self.total_fulfilled - self.total_withdrawn,
        )
