"""In-page integration points of the embedded Strudel REPL.

Each probe is a JavaScript function evaluated in the page with one argument.
It returns ``true``/``false`` when its integration point exists and ``null``
when it does not. Callers try probes in list order and stop at the first
non-null result, so supporting a new REPL build is a list edit.
"""

from __future__ import annotations

from dataclasses import dataclass

READY_SELECTOR = "strudel-editor"

READY_FUNCTION = """
() => {
  const el = document.querySelector('strudel-editor');
  return !!(el && el.editor && typeof el.editor.setCode === 'function');
}
"""


@dataclass(frozen=True)
class PageProbe:
    name: str
    script: str


DELIVERY_PROBES: tuple[PageProbe, ...] = (
    PageProbe(
        "strudel-editor",
        """
        (code) => {
          const el = document.querySelector('strudel-editor');
          const editor = el && el.editor;
          if (!editor || typeof editor.setCode !== 'function') return null;
          editor.setCode(code);
          if (typeof editor.evaluate === 'function') editor.evaluate();
          return true;
        }
        """,
    ),
    PageProbe(
        "repl-global",
        """
        (code) => {
          const editor = window.repl && window.repl.editor;
          if (!editor) return null;
          if (typeof editor.setCode === 'function') editor.setCode(code);
          else if (typeof editor.setValue === 'function') editor.setValue(code);
          else return null;
          if (typeof window.repl.evaluate === 'function') window.repl.evaluate(code);
          return true;
        }
        """,
    ),
    PageProbe(
        "codemirror6",
        """
        (code) => {
          const node = document.querySelector('.cm-editor');
          const view = node && node.cmView && node.cmView.view;
          if (!view) return null;
          view.dispatch({ changes: { from: 0, to: view.state.doc.length, insert: code } });
          return true;
        }
        """,
    ),
    PageProbe(
        "codemirror5",
        """
        (code) => {
          const node = document.querySelector('.CodeMirror');
          if (!node || !node.CodeMirror) return null;
          node.CodeMirror.setValue(code);
          return true;
        }
        """,
    ),
    PageProbe(
        "legacy-send",
        """
        (code) => {
          if (typeof window.sendCodeToStrudel !== 'function') return null;
          return !!window.sendCodeToStrudel(code);
        }
        """,
    ),
)

STOP_PROBES: tuple[PageProbe, ...] = (
    PageProbe(
        "strudel-editor",
        """
        () => {
          const el = document.querySelector('strudel-editor');
          const editor = el && el.editor;
          if (!editor || typeof editor.stop !== 'function') return null;
          editor.stop();
          return true;
        }
        """,
    ),
    PageProbe(
        "repl-global",
        """
        () => {
          if (!window.repl || typeof window.repl.stop !== 'function') return null;
          window.repl.stop();
          return true;
        }
        """,
    ),
    PageProbe(
        "hush",
        """
        () => {
          if (typeof window.hush !== 'function') return null;
          window.hush();
          return true;
        }
        """,
    ),
    PageProbe(
        "legacy-stop",
        """
        () => {
          if (typeof window.stopStrudel !== 'function') return null;
          return !!window.stopStrudel();
        }
        """,
    ),
)

EVALUATE_PROBES: tuple[PageProbe, ...] = (
    PageProbe(
        "strudel-editor",
        """
        () => {
          const el = document.querySelector('strudel-editor');
          const editor = el && el.editor;
          if (!editor || typeof editor.evaluate !== 'function') return null;
          editor.evaluate();
          return true;
        }
        """,
    ),
    PageProbe(
        "legacy-start",
        """
        () => {
          if (typeof window.startStrudel !== 'function') return null;
          return !!window.startStrudel();
        }
        """,
    ),
)
