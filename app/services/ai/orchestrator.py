"""
Dialogue Orchestrator

CLASSIFY -> FETCH -> PROMPT_BUILD -> TOOL_LOOP -> FINALIZE for one chat turn.

The tool loop only runs for customer-facing apps and is bounded by
MAX_TOOL_ROUNDS. Every assistant tool-call message is followed by exactly one
tool message per call id, failed executions included.
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Set

from app.config.settings import settings
from app.core.ai.types import (
    Action,
    AppSource,
    CompletionResult,
    ScratchContext,
    ScreenContext,
    SideCollectors,
    ToolCall,
    ToolContext,
)
from app.services.data_gateway import DataGateway, GatewayResult
from app.services.ai import context_formatter as fmt
from app.services.ai.keyword_classifier import (
    IntentFlags,
    classify,
    detect_add_to_cart,
    detect_navigation,
    is_confirmation,
)
from app.services.ai.llm_client import LLMClient, LLMError, StreamDelta
from app.services.ai.parallel_fetch import plan_turn_fetches, run_batch
from app.services.ai.prompt_builder import build_messages, build_system_prompt
from app.services.ai.session_store import BackgroundWriter, SessionStore
from app.services.ai.tools import MUTATING_TOOLS, ToolExecutor, tool_definitions

logger = logging.getLogger(__name__)

GENERIC_ERROR = "Bir hata oluştu. Lütfen tekrar deneyin."
AI_SERVICE_ERROR = "AI servisi hatası"
EMPTY_REPLY = "Üzgünüm, yanıt oluşturulamadı."
TOOL_FAILURE = "Bu işlem şu an gerçekleştirilemedi. Kullanıcıdan özür dile ve başka bir yardım öner."

CANCEL_TOOLS = frozenset({"cancel_order", "cancel_taxi_ride"})


def _same_arguments(confirmed: Optional[Dict[str, Any]], requested: Dict[str, Any]) -> bool:
    """Compare what the user agreed to with what the model is about to run, ignoring ``confirmed``."""
    def normalise(args: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        return {k: v for k, v in (args or {}).items() if k != "confirmed" and v is not None}

    return normalise(confirmed) == normalise(requested)


class ChatServiceError(Exception):
    """Turn-level failure; the message is safe to show to the user."""

    def __init__(self, message: str = GENERIC_ERROR, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass
class ChatTurnRequest:
    user_id: str
    message: str
    app_source: AppSource
    session_id: Optional[str] = None
    user_type: str = "customer"
    screen_context: Optional[ScreenContext] = None
    generate_audio: bool = False
    stream: bool = False


@dataclass
class PreparedTurn:
    """State carried from prompt build through finalization"""
    request: ChatTurnRequest
    session_id: str
    messages: List[Dict[str, Any]]
    tool_context: ToolContext
    flags: IntentFlags = field(default_factory=IntentFlags)
    scratch: ScratchContext = field(default_factory=ScratchContext)
    collectors: SideCollectors = field(default_factory=SideCollectors)
    tokens_used: int = 0
    # Set when round 0 answered without tools; no finalization call needed
    final_content: Optional[str] = None
    rounds: int = 0
    confirmed_tools: Set[str] = field(default_factory=set)


class ChatOrchestrator:
    def __init__(
        self,
        gateway: DataGateway,
        llm: LLMClient,
        scratch_store: Any,
        executor: Optional[ToolExecutor] = None,
        session_store: Optional[SessionStore] = None,
        writer: Optional[BackgroundWriter] = None,
        max_tool_rounds: Optional[int] = None,
        history_limit: Optional[int] = None,
    ):
        self.gateway = gateway
        self.llm = llm
        self.scratch_store = scratch_store
        self.executor = executor or ToolExecutor(gateway)
        self.session_store = session_store or SessionStore(gateway)
        self.writer = writer or BackgroundWriter()
        self.max_tool_rounds = max_tool_rounds or settings.MAX_TOOL_ROUNDS
        self.history_limit = history_limit or settings.HISTORY_LIMIT

    # ------------------------------------------------------------------
    # session
    # ------------------------------------------------------------------

    async def open_session(self, request: ChatTurnRequest) -> str:
        if request.session_id:
            return request.session_id
        result = await self.session_store.create_session(
            request.user_id, request.app_source.value, request.user_type
        )
        if not result.ok:
            logger.error("Session creation failed for user %s: %s", request.user_id, result.error)
            raise ChatServiceError(GENERIC_ERROR)
        session_id = str(result.data["id"])
        logger.info("Created chat session %s (%s)", session_id, request.app_source.value)
        return session_id

    # ------------------------------------------------------------------
    # classify, fetch, prompt build, tool loop
    # ------------------------------------------------------------------

    async def prepare(self, request: ChatTurnRequest, session_id: str) -> PreparedTurn:
        flags = classify(request.message)
        results = await run_batch(plan_turn_fetches(
            gateway=self.gateway,
            session_store=self.session_store,
            scratch_store=self.scratch_store,
            user_id=request.user_id,
            session_id=session_id,
            message=request.message,
            app_source=request.app_source,
            flags=flags,
            screen_context=request.screen_context,
            history_limit=self.history_limit,
        ))

        scratch = results["scratch"].data if isinstance(results["scratch"].data, ScratchContext) else ScratchContext()
        collectors = SideCollectors()
        context_blocks: List[str] = []

        if "order_status" in results and results["order_status"].ok:
            context_blocks.append(fmt.format_order_status(results["order_status"].data))

        if "food_recommendation" in results and results["food_recommendation"].ok and results["food_recommendation"].data:
            context_blocks.append(fmt.format_food_recommendation(results["food_recommendation"].data))
            promotions = results.get("promotions")
            if promotions is not None and promotions.ok:
                context_blocks.append(fmt.format_promotions(promotions.data))

        if "merchant_data" in results and results["merchant_data"].ok and results["merchant_data"].data:
            context_blocks.append(fmt.format_merchant_info(results["merchant_data"].data))

        if request.app_source.is_customer_facing and (flags.is_restaurant_search_query or flags.food_keywords):
            hint = fmt.format_search_hint(flags.food_keywords or flags.extracted_terms)
            if hint:
                context_blocks.append(hint)

        merchant_products = self._screen_actions(request, results.get("merchant_products"), collectors)
        if collectors.cart_mutations:
            added = ", ".join(f"{m['quantity']} x {m['name']}" for m in collectors.cart_mutations)
            context_blocks.append(
                f"[SEPET]: {added} ekrandan doğrudan sepete eklendi. Bunun için add_to_cart çağırma, sadece bilgi ver."
            )

        allergies_row = self._data(results.get("user_allergies")) or {}
        system_prompt = build_system_prompt(
            message=request.message,
            prompt_row=self._data(results.get("system_prompt")),
            allergies=allergies_row.get("allergies") if isinstance(allergies_row, dict) else None,
            knowledge_base=self._data(results.get("knowledge_base")) or [],
            screen_context=request.screen_context if request.app_source == AppSource.SUPER_APP else None,
            merchant_products=merchant_products,
            context_blocks=context_blocks,
            scratch=scratch,
        )
        history = self._data(results.get("history")) or []
        address = results.get("user_address")

        turn = PreparedTurn(
            request=request,
            session_id=session_id,
            messages=build_messages(system_prompt, history, request.message),
            tool_context=ToolContext(
                user_id=request.user_id,
                session_id=session_id,
                app_source=request.app_source,
                message=request.message,
                user_address=(address.data or {}) if address is not None and address.ok else None,
                screen_context=request.screen_context,
            ),
            flags=flags,
            scratch=scratch,
            collectors=collectors,
        )

        if request.app_source.is_customer_facing:
            await self._run_tool_loop(turn)
        return turn

    @staticmethod
    def _data(result: Optional[GatewayResult]) -> Any:
        if result is None or not result.ok:
            return None
        return result.data

    def _screen_actions(
        self,
        request: ChatTurnRequest,
        products_result: Optional[GatewayResult],
        collectors: SideCollectors,
    ) -> str:
        """Merchant product block plus direct add-to-cart / navigation actions on the super app."""
        screen = request.screen_context
        if request.app_source != AppSource.SUPER_APP or screen is None:
            return ""

        block = ""
        products: List[Dict[str, Any]] = []
        data = self._data(products_result)
        if isinstance(data, dict) and screen.entity_id and screen.is_detail_screen:
            products = [p for p in (data.get("products") or []) if isinstance(p, dict)]
            block = fmt.format_merchant_products(products, data.get("total_count"), screen.entity_name)

            match = detect_add_to_cart(request.message, products)
            if match is not None:
                product, quantity = match
                action = Action.add_to_cart(
                    product_id=str(product.get("id")),
                    name=product.get("name") or "",
                    price=product.get("discounted_price") or product.get("price"),
                    merchant_id=str(screen.entity_id),
                    merchant_name=screen.entity_name or "",
                    merchant_type=screen.entity_type or "restaurant",
                    quantity=quantity,
                    image_url=product.get("image_url") or "",
                )
                collectors.actions.append(action)
                collectors.cart_mutations.append(dict(action.payload))

        route = detect_navigation(request.message, has_merchant_products=bool(block))
        if route:
            collectors.actions.append(Action.navigate(route))
        return block

    async def _complete(self, messages: List[Dict[str, Any]], tools: Optional[List[Dict[str, Any]]] = None) -> CompletionResult:
        try:
            return await self.llm.complete(messages, tools=tools)
        except LLMError as e:
            logger.error("LLM completion failed: %s", e)
            raise ChatServiceError(GENERIC_ERROR) from e

    async def _run_tool_loop(self, turn: PreparedTurn):
        tools = tool_definitions()
        for round_index in range(self.max_tool_rounds):
            turn.rounds = round_index + 1
            completion = await self._complete(turn.messages, tools)
            turn.tokens_used += completion.total_tokens

            if not completion.tool_calls:
                if round_index == 0:
                    turn.final_content = completion.content or EMPTY_REPLY
                # later rounds fall through to a tool-free finalization call
                return

            logger.info(
                "Tool round %d: %s", round_index + 1, ", ".join(call.name for call in completion.tool_calls)
            )
            turn.messages.append({
                "role": "assistant",
                "content": completion.content or None,
                "tool_calls": [call.to_message_entry() for call in completion.tool_calls],
            })
            outputs = await self._execute_tool_calls(turn, completion.tool_calls)
            for call, output in zip(completion.tool_calls, outputs):
                turn.messages.append({"role": "tool", "tool_call_id": call.id, "content": output})

        logger.warning("Tool loop hit the %d-round limit for session %s", self.max_tool_rounds, turn.session_id)

    async def _execute_tool_calls(self, turn: PreparedTurn, calls: List[ToolCall]) -> List[str]:
        """All-settled execution; one output string per call, in call order."""
        coroutines = [
            self.executor.execute(call.name, self._guard_confirmation(turn, call), turn.tool_context, turn.collectors)
            for call in calls
        ]
        outcomes = await asyncio.gather(*coroutines, return_exceptions=True)

        outputs: List[str] = []
        for call, outcome in zip(calls, outcomes):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                logger.error("Tool %s (%s) failed: %s", call.name, call.id, outcome, exc_info=outcome)
                outputs.append(TOOL_FAILURE)
            else:
                outputs.append(outcome if isinstance(outcome, str) and outcome else TOOL_FAILURE)
        return outputs

    def _guard_confirmation(self, turn: PreparedTurn, call: ToolCall) -> str:
        """
        Downgrade ``confirmed=true`` on a mutating tool unless the session has a
        pending confirmation for that tool with the same arguments and the
        user's latest message confirms it. Cancellations need an explicit
        cancel confirmation ("evet", "evet iptal", ...), not just "tamam".
        """
        if call.name not in MUTATING_TOOLS:
            return call.arguments
        try:
            args = json.loads(call.arguments or "{}")
        except ValueError:
            return call.arguments
        if not isinstance(args, dict) or not args.get("confirmed"):
            return call.arguments

        pending = turn.scratch.pending_confirmation or {}
        allowed = (
            pending.get("tool") == call.name
            and _same_arguments(pending.get("arguments"), args)
            and call.name not in turn.confirmed_tools
            and is_confirmation(turn.request.message)
            and (call.name not in CANCEL_TOOLS or turn.flags.is_cancel_confirmation)
        )
        if allowed:
            turn.confirmed_tools.add(call.name)
            return call.arguments

        logger.warning("Downgrading unconfirmed %s call to eligibility check (session %s)", call.name, turn.session_id)
        args["confirmed"] = False
        return json.dumps(args, ensure_ascii=False)

    # ------------------------------------------------------------------
    # finalize
    # ------------------------------------------------------------------

    async def finalize(self, turn: PreparedTurn) -> str:
        if turn.final_content is not None:
            return turn.final_content
        completion = await self._complete(turn.messages)
        turn.tokens_used += completion.total_tokens
        turn.final_content = completion.content or EMPTY_REPLY
        return turn.final_content

    async def finalize_stream(self, turn: PreparedTurn) -> AsyncIterator[StreamDelta]:
        """Stream the user-facing reply; a round-0 answer is replayed as one chunk."""
        if turn.final_content is not None:
            yield StreamDelta(text=turn.final_content)
            return
        try:
            async for delta in self.llm.stream(turn.messages):
                if delta.total_tokens is not None:
                    turn.tokens_used += delta.total_tokens
                yield delta
        except LLMError as e:
            logger.error("LLM stream failed: %s", e)
            raise ChatServiceError(AI_SERVICE_ERROR) from e

    def persist(self, turn: PreparedTurn, content: str):
        """Fire-and-forget writes for the finished turn."""
        self.writer.spawn(
            self.session_store.save_message(turn.session_id, "assistant", content, turn.tokens_used),
            "assistant_message",
        )
        self.writer.spawn(self.session_store.touch_session(turn.session_id), "session_touch")

        updated = self.next_scratch(turn)
        if updated.to_dict() != turn.scratch.to_dict():
            self.writer.spawn(self.scratch_store.save(turn.session_id, updated), "scratch_save")

    @staticmethod
    def next_scratch(turn: PreparedTurn) -> ScratchContext:
        """Newer values supersede older ones; a pending confirmation only lives for one turn."""
        collectors = turn.collectors
        return ScratchContext(
            last_search_context=collectors.search_snapshot or turn.scratch.last_search_context,
            last_cart_context=collectors.cart_mutations or turn.scratch.last_cart_context,
            pending_confirmation=collectors.pending_confirmation,
        )
