from __future__ import annotations

from pathlib import Path
import sys
from typing import Callable, Optional

from textual import events
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Vertical
from textual.screen import ModalScreen, Screen
from textual.widgets import Footer, Header, Input, OptionList, Static, Tree
from textual.widgets.option_list import Option
from textual.widgets._tree import TextType
from rich.text import Text

from node_models import TreeNode
import recall
from sessions import DEMO_NAME, DEMO_OUTLINE, Session, SessionManager
from storage import FileBlobStore, SessionRepository


class OutlineTree(Tree[TreeNode]):
    """Tree widget specialised for parsed outline nodes."""

    def process_label(self, label: TextType) -> Text:
        if isinstance(label, str):
            return Text.from_markup(label, justify="left")
        return label


class FileImportScreen(ModalScreen[dict[str, str] | None]):
    """Modal prompt for the path of an outline file to study."""

    DEFAULT_CSS = """
    FileImportScreen {
        align: center middle;
        background: transparent;
    }

    #file-import-field {
        width: 60;
        border: round $secondary;
        background: $surface;
    }
    """

    def __init__(self, initial_path: str) -> None:
        super().__init__()
        self._initial_path = initial_path

    def compose(self) -> ComposeResult:
        yield Input(
            value=self._initial_path,
            placeholder="notes.md or outline.txt",
            id="file-import-field",
        )

    def on_mount(self) -> None:
        self.query_one("#file-import-field", Input).focus()

    def on_key(self, event: events.Key) -> None:
        if event.key == "escape":
            event.stop()
            self.dismiss(None)

    def on_input_submitted(self, event: Input.Submitted) -> None:
        event.stop()
        self.dismiss({"action": "load", "path": event.value})


class ConfirmScreen(ModalScreen[bool]):
    """Yes/no question; anything but ``y`` answers no."""

    DEFAULT_CSS = """
    ConfirmScreen {
        align: center middle;
    }

    #confirm-panel {
        width: 40;
        height: auto;
        background: $panel;
        border: round $error;
        padding: 1 2;
        content-align: center middle;
    }
    """

    def __init__(self, question: str) -> None:
        super().__init__()
        self._question = question

    def compose(self) -> ComposeResult:
        yield Static(f"{self._question}  (y/n)", id="confirm-panel")

    def on_key(self, event: events.Key) -> None:
        event.stop()
        self.dismiss(event.key == "y")


class RecallPromptScreen(ModalScreen[bool]):
    """Answer box for one masked node.

    A wrong answer keeps the dialog open and flashes the field; a right
    answer closes it with ``True``.
    """

    DEFAULT_CSS = """
    RecallPromptScreen {
        align: center middle;
        background: transparent;
    }

    #recall-panel {
        width: 64;
        height: auto;
        background: $panel;
        border: round $secondary;
        padding: 1 2;
    }

    #recall-path {
        color: $text-muted;
        padding-bottom: 1;
    }

    #recall-input.-mismatch {
        border: round $error;
        background: $error 20%;
    }
    """

    BINDINGS = [
        Binding("f1", "hint", "Hint", priority=True),
    ]

    def __init__(
        self,
        breadcrumb: str,
        initial_text: str,
        check: Callable[[str], bool],
        hint: Callable[[], str],
    ) -> None:
        super().__init__()
        self._breadcrumb = breadcrumb
        self._initial_text = initial_text
        self._check = check
        self._hint = hint

    def compose(self) -> ComposeResult:
        with Vertical(id="recall-panel"):
            yield Static(self._breadcrumb, id="recall-path")
            yield Input(
                value=self._initial_text,
                placeholder="Type to recall… (F1 hint, Esc cancel)",
                id="recall-input",
            )

    def on_mount(self) -> None:
        self.query_one("#recall-input", Input).focus()

    def on_key(self, event: events.Key) -> None:
        if event.key == "escape":
            event.stop()
            self.dismiss(False)

    def on_input_changed(self, event: Input.Changed) -> None:
        event.input.remove_class("-mismatch")

    def on_input_submitted(self, event: Input.Submitted) -> None:
        event.stop()
        if self._check(event.value):
            self.dismiss(True)
            return
        field = event.input
        field.add_class("-mismatch")
        self.app.bell()
        self.set_timer(
            recall.MISMATCH_FLASH_SECONDS, lambda: field.remove_class("-mismatch")
        )

    def action_hint(self) -> None:
        field = self.query_one("#recall-input", Input)
        field.value = self._hint()
        field.cursor_position = len(field.value)
        field.focus()


class DashboardScreen(Screen[None]):
    """History of study sessions, most recent first."""

    BINDINGS = [
        Binding("u", "upload", "Upload"),
        Binding("d", "demo", "Demo"),
        Binding("x", "delete_session", "Delete"),
        Binding("q", "quit", "Quit"),
    ]

    def __init__(self, manager: SessionManager) -> None:
        super().__init__()
        self.manager = manager
        self._last_path = ""

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        yield OptionList(id="session-list")
        yield Footer()

    def on_mount(self) -> None:
        self.refresh_sessions()
        self.query_one("#session-list", OptionList).focus()

    def on_screen_resume(self) -> None:
        self.refresh_sessions()

    @staticmethod
    def _format_session(session: Session) -> Text:
        label = Text(session.file_name, style="bold")
        label.append(f"   {session.progress}% Complete", style="green")
        label.append(f"   Lvl {int(session.difficulty)}", style="dim")
        return label

    def refresh_sessions(self) -> None:
        option_list = self.query_one("#session-list", OptionList)
        option_list.clear_options()
        if not self.manager.sessions:
            option_list.add_option(
                Option("No sessions found. Press u to upload a file or d for the demo.",
                       id="__empty__", disabled=True)
            )
        else:
            option_list.add_options(
                [Option(self._format_session(s), id=s.id) for s in self.manager.sessions]
            )
        count = len(self.manager.sessions)
        self.app.sub_title = f"{count} session{'s' if count != 1 else ''}"

    def _highlighted_session_id(self) -> Optional[str]:
        option_list = self.query_one("#session-list", OptionList)
        if option_list.highlighted is None:
            return None
        option = option_list.get_option_at_index(option_list.highlighted)
        if option.id in (None, "__empty__"):
            return None
        return option.id

    def start_study(self) -> None:
        self.app.push_screen(StudyScreen(self.manager))

    def on_option_list_option_selected(self, event: OptionList.OptionSelected) -> None:
        if event.option_id in (None, "__empty__"):
            return
        self.manager.open(event.option_id)
        self.start_study()

    def upload_text(self, text: str, file_name: str) -> None:
        self.manager.upload(text, file_name)
        self.refresh_sessions()
        self.start_study()

    def upload_path(self, raw_path: str) -> bool:
        target = Path(raw_path.strip()).expanduser()
        if not raw_path.strip() or not target.is_file():
            self.app.bell()
            self.app.sub_title = f"{target} not found."
            return False
        try:
            content = target.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            self.app.bell()
            self.app.sub_title = f"Failed to load {target}: {exc}"
            return False
        self._last_path = str(target)
        self.upload_text(content, target.name)
        return True

    def action_upload(self) -> None:
        def apply_path(result: dict[str, str] | None) -> None:
            if not result or result.get("action") != "load":
                return
            self.upload_path(result.get("path", ""))

        self.app.push_screen(FileImportScreen(self._last_path), apply_path)

    def action_demo(self) -> None:
        self.upload_text(DEMO_OUTLINE, DEMO_NAME)

    def action_delete_session(self) -> None:
        session_id = self._highlighted_session_id()
        if session_id is None:
            self.app.bell()
            return
        self.manager.delete(session_id)
        self.refresh_sessions()

    def action_quit(self) -> None:
        self.app.exit()


class StudyScreen(Screen[None]):
    """Active-recall view of the open session."""

    DEFAULT_CSS = """
    #outline-tree {
        width: 1fr;
    }
    """

    BINDINGS = [
        Binding("escape", "save_and_exit", "Exit"),
        Binding("h", "hint", "Hint"),
        Binding("s", "toggle_star", "Star"),
        Binding("c", "toggle_collapse", "Fold"),
        Binding("a", "toggle_expand_all", "Expand All"),
        Binding("f", "toggle_starred_only", "Starred"),
        Binding("r", "reset_progress", "Reset"),
        Binding("1", "set_difficulty(1)", "Lvl", key_display="1-3"),
        Binding("2", "set_difficulty(2)", "Lvl", show=False),
        Binding("3", "set_difficulty(3)", "Lvl", show=False),
    ]

    def __init__(self, manager: SessionManager) -> None:
        super().__init__()
        self.manager = manager
        self.starred_only = False
        self._tree_widget: Optional[OutlineTree] = None

    @property
    def session(self) -> Session:
        return self.manager.require_active()

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        tree = OutlineTree("Mind Map", id="outline-tree")
        tree.show_root = True
        tree.auto_expand = False
        self._tree_widget = tree
        yield tree
        yield Footer()

    def on_mount(self) -> None:
        self.rebuild_tree()

    def require_tree(self) -> OutlineTree:
        if self._tree_widget is None:
            raise RuntimeError("Tree widget not initialised")
        return self._tree_widget

    def rebuild_tree(self, select_id: Optional[str] = None) -> None:
        session = self.session
        tree = self.require_tree()
        tree.clear()
        root_node = tree.root
        self.populate_tree(root_node, session.data)
        if session.state(session.data.id).is_collapsed:
            root_node.collapse()
        else:
            root_node.expand()
        target = self._find_tree_node(select_id) if select_id else None
        # move_cursor, not select_node: selecting opens the recall prompt.
        tree.call_after_refresh(tree.move_cursor, target or root_node)
        tree.focus()
        self.show_status()

    def populate_tree(self, tree_node: Tree.Node[TreeNode], outline_node: TreeNode) -> None:
        tree_node.set_label(self._format_node_label(outline_node))
        tree_node.data = outline_node
        states = self.session.node_states
        for child in outline_node.children:
            if self.starred_only and not recall.has_starred_descendant(child, states):
                continue
            if child.children:
                collapsed = recall.get_state(states, child.id).is_collapsed
                child_tree_node = tree_node.add(
                    self._format_node_label(child), data=child, expand=not collapsed
                )
                self.populate_tree(child_tree_node, child)
            else:
                tree_node.add_leaf(self._format_node_label(child), data=child)

    def _find_tree_node(self, node_id: str) -> Optional[Tree.Node[TreeNode]]:
        stack = [self.require_tree().root]
        while stack:
            candidate = stack.pop()
            if candidate.data is not None and candidate.data.id == node_id:
                return candidate
            stack.extend(candidate.children)
        return None

    def _format_node_label(self, node: TreeNode) -> Text:
        session = self.session
        state = session.state(node.id)
        label = Text()
        if state.is_starred:
            label.append("★ ", style="bold yellow")
        if recall.is_hidden(node, session.difficulty, session.node_states):
            revealed = recall.hint_text(node.text, state.hint_count)
            label.append(f"[ {revealed}… ]" if revealed else "[ ? ]", style="reverse")
            if state.hint_count:
                label.append(f"  hints: {state.hint_count}", style="dim")
            return label
        style = "bold" if node.level == 0 else ""
        if state.is_solved:
            label.append("✔ ", style="bold green")
            style = f"{style} green".strip()
        label.append(node.text, style=style)
        return label

    def _selected_outline_node(self) -> Optional[TreeNode]:
        cursor = self.require_tree().cursor_node
        return cursor.data if cursor is not None else None

    def _node_path(self, tree_node: Tree.Node[TreeNode]) -> list[str]:
        session = self.session
        titles: list[str] = []
        current: Optional[Tree.Node[TreeNode]] = tree_node.parent
        while current is not None:
            data = current.data
            if data is not None:
                # Hidden ancestors must not give the answer away.
                hidden = recall.is_hidden(data, session.difficulty, session.node_states)
                titles.append("?" if hidden else data.text)
            current = current.parent
        titles.reverse()
        titles.append("?")
        return titles

    def show_status(self, message: str | None = None) -> None:
        session = self.session
        composed = f"{session.file_name} · Recall {session.progress}% · Lvl {int(session.difficulty)}"
        if self.starred_only:
            composed = f"{composed} · starred only"
        if message:
            composed = f"{composed} · {message}"
        self.app.sub_title = composed

    def open_recall_prompt(self, initial_text: str = "") -> None:
        tree = self.require_tree()
        tree_node = tree.cursor_node
        node = tree_node.data if tree_node is not None else None
        if node is None:
            self.app.bell()
            return
        session = self.session
        if not recall.is_hidden(node, session.difficulty, session.node_states):
            self.show_status("Nothing to recall here.")
            return

        def check(guess: str) -> bool:
            return self.manager.check_answer(node.id, guess)

        def hint() -> str:
            return self.manager.request_hint(node.id)

        def after(solved: bool | None) -> None:
            self.rebuild_tree(select_id=node.id)
            if solved:
                self.show_status("Correct!")

        self.app.push_screen(
            RecallPromptScreen(" > ".join(self._node_path(tree_node)), initial_text, check, hint),
            after,
        )

    def on_tree_node_selected(self, event: Tree.NodeSelected[TreeNode]) -> None:
        event.stop()
        self.open_recall_prompt()

    def _sync_collapse(self, tree_node: Tree.Node[TreeNode], collapsed: bool) -> None:
        node = tree_node.data
        if self.manager.active is None or node is None or not node.children:
            return
        if self.session.state(node.id).is_collapsed == collapsed:
            return
        self.manager.toggle_collapse(node.id)
        self.show_status()

    def on_tree_node_expanded(self, event: Tree.NodeExpanded[TreeNode]) -> None:
        self._sync_collapse(event.node, collapsed=False)

    def on_tree_node_collapsed(self, event: Tree.NodeCollapsed[TreeNode]) -> None:
        self._sync_collapse(event.node, collapsed=True)

    def action_hint(self) -> None:
        node = self._selected_outline_node()
        session = self.session
        if node is None or not recall.is_hidden(node, session.difficulty, session.node_states):
            self.app.bell()
            return
        self.open_recall_prompt(self.manager.request_hint(node.id))

    def action_toggle_star(self) -> None:
        node = self._selected_outline_node()
        if node is None:
            self.app.bell()
            return
        self.manager.toggle_star(node.id)
        self.rebuild_tree(select_id=node.id)

    def action_toggle_collapse(self) -> None:
        node = self._selected_outline_node()
        if node is None or not node.children:
            self.app.bell()
            return
        self.manager.toggle_collapse(node.id)
        self.rebuild_tree(select_id=node.id)

    def action_toggle_expand_all(self) -> None:
        node = self._selected_outline_node()
        self.manager.toggle_global_expand()
        self.rebuild_tree(select_id=node.id if node else None)

    def action_toggle_starred_only(self) -> None:
        node = self._selected_outline_node()
        self.starred_only = not self.starred_only
        self.rebuild_tree(select_id=node.id if node else None)

    def action_set_difficulty(self, level: int) -> None:
        node = self._selected_outline_node()
        self.manager.set_difficulty(level)
        self.rebuild_tree(select_id=node.id if node else None)

    def action_reset_progress(self) -> None:
        def apply_reset(confirmed: bool | None) -> None:
            if not confirmed:
                self.show_status("Progress kept.")
                return
            self.manager.reset_progress()
            self.rebuild_tree()
            self.show_status("Progress reset.")

        self.app.push_screen(ConfirmScreen("Reset progress?"), apply_reset)

    def action_save_and_exit(self) -> None:
        self.manager.save_and_exit()
        self.app.pop_screen()


class PromindmapApp(App[None]):
    """Textual user interface for outline recall practice."""

    TITLE = "promindmap"

    def __init__(
        self,
        initial_outline_path: str | Path | None = None,
        *,
        repository: SessionRepository | None = None,
    ) -> None:
        super().__init__()
        self.title = "promindmap"
        self.manager = SessionManager(repository or SessionRepository(FileBlobStore()))
        self._initial_load_path: Optional[Path] = (
            Path(initial_outline_path).expanduser() if initial_outline_path else None
        )

    def on_mount(self) -> None:
        self.manager.load()
        dashboard = DashboardScreen(self.manager)
        self.push_screen(dashboard)
        if self._initial_load_path:
            self.call_after_refresh(dashboard.upload_path, str(self._initial_load_path))


def main() -> None:
    initial_path = sys.argv[1] if len(sys.argv) > 1 else None
    PromindmapApp(initial_path).run()


if __name__ == "__main__":
    main()
