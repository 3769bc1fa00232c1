"""
Tkinter GUI for RFBR Loader

Provides book URL and page count input, output file selection, a Download
button and progress reporting for the fetch and build phases.
"""

import json
import os
import queue
import threading
import tkinter as tk
from tkinter import ttk, filedialog, messagebox

from rfbr_loader.core.controller import BookLoaderController, RunConfig, RunState, StatusEvent
from rfbr_loader.core.errors import BookLoaderError, InvalidPageCount
from rfbr_loader.core.logger import initialize_logging
from rfbr_loader.utils.validators import validate_reference, validate_page_count


class RfbrLoaderApp(tk.Tk):
    def __init__(self):
        super().__init__()
        self.title("RFBR Loader – Book Downloader")
        self.geometry("620x300")

        self._worker = None
        self._queue = queue.Queue()

        self._build_ui()
        self._load_settings()
        self._show_state(StatusEvent(RunState.IDLE))
        self._poll_queue()
        self.protocol("WM_DELETE_WINDOW", self._on_close)

    def _build_ui(self):
        frm = ttk.Frame(self, padding=12)
        frm.pack(fill=tk.BOTH, expand=True)

        ttk.Label(frm, text="Book URL").grid(row=0, column=0, sticky="w")
        self.url_var = tk.StringVar()
        ttk.Entry(frm, textvariable=self.url_var, width=70).grid(row=1, column=0, columnspan=3, sticky="ew", pady=4)

        ttk.Label(frm, text="Pages (blank = detect)").grid(row=2, column=0, sticky="w")
        self.pages_var = tk.StringVar()
        ttk.Entry(frm, textvariable=self.pages_var, width=8).grid(row=2, column=1, sticky="w")
        ttk.Label(frm, text="Parallel downloads").grid(row=2, column=2, sticky="e")
        self.conc_var = tk.IntVar(value=8)
        ttk.Combobox(frm, values=[1, 2, 4, 8, 16], textvariable=self.conc_var, width=5,
                     state="readonly").grid(row=2, column=3, sticky="w")

        ttk.Label(frm, text="Save as").grid(row=3, column=0, sticky="w")
        self.out_var = tk.StringVar(value="Book.pdf")
        ttk.Entry(frm, textvariable=self.out_var, width=60).grid(row=4, column=0, columnspan=2, sticky="ew", pady=4)
        ttk.Button(frm, text="Browse", command=self._choose_output).grid(row=4, column=2, sticky="e")

        self.start_btn = ttk.Button(frm, text="Download", command=self._start)
        self.start_btn.grid(row=5, column=0, sticky="w", pady=8)

        self.progress = ttk.Progressbar(frm, mode='determinate')
        self.progress.grid(row=6, column=0, columnspan=4, sticky="ew", pady=4)
        self.status_var = tk.StringVar()
        ttk.Label(frm, textvariable=self.status_var).grid(row=7, column=0, columnspan=4, sticky="w")

        frm.columnconfigure(0, weight=1)

    def _choose_output(self):
        path = filedialog.asksaveasfilename(defaultextension=".pdf",
                                            filetypes=[("PDF", "*.pdf")],
                                            initialfile=os.path.basename(self.out_var.get() or "Book.pdf"))
        if path:
            self.out_var.set(path)

    def _start(self):
        ok, _, error = validate_reference(self.url_var.get().strip())
        if not ok:
            messagebox.showerror("Validation", error)
            return
        pages_text = self.pages_var.get().strip()
        try:
            page_count = validate_page_count(pages_text) if pages_text else None
        except InvalidPageCount as e:
            messagebox.showerror("Validation", str(e))
            return

        cfg = RunConfig(
            reference=self.url_var.get().strip(),
            page_count=page_count,
            output_path=self.out_var.get().strip() or "Book.pdf",
            concurrency=int(self.conc_var.get() or 8),
        )
        controller = BookLoaderController(cfg)

        def run_worker():
            try:
                report = controller.run(progress=lambda e: self._queue.put(("status", e)))
                self._queue.put(("done", report))
            except BookLoaderError as e:
                self._queue.put(("error", str(e)))

        self.start_btn.config(state=tk.DISABLED)
        self._worker = threading.Thread(target=run_worker, daemon=True)
        self._worker.start()
        self._save_settings()

    def _poll_queue(self):
        try:
            while True:
                kind, payload = self._queue.get_nowait()
                if kind == "status":
                    self._show_state(payload)
                elif kind == "done":
                    self._show_state(StatusEvent(RunState.IDLE))
                    msg = f"Download complete!\n{len(payload.appended_pages)} pages saved to {payload.output_path}"
                    if payload.failed_pages:
                        msg += f"\nFailed pages: {', '.join(str(i + 1) for i in payload.failed_pages)}"
                    messagebox.showinfo("RFBR Loader", msg)
                elif kind == "error":
                    messagebox.showerror("RFBR Loader", payload)
        except queue.Empty:
            pass
        self.after(150, self._poll_queue)

    def _show_state(self, event: StatusEvent):
        state = event.state
        if state is RunState.IDLE:
            self.progress.stop()
            self.progress.config(mode='determinate', value=0)
            self.progress.grid_remove()
            self.start_btn.config(state=tk.NORMAL)
            self.status_var.set('Paste a book link and press "Download"')
        elif state is RunState.PREPARING:
            self.progress.grid()
            self.progress.config(mode='indeterminate')
            self.progress.start(80)
            self.start_btn.config(state=tk.DISABLED)
            self.status_var.set("Preparing to download the book...")
        elif state in (RunState.FETCHING, RunState.BUILDING):
            self.progress.grid()
            self.progress.stop()
            self.progress.config(mode='determinate', maximum=max(event.total, 1), value=event.current)
            self.start_btn.config(state=tk.DISABLED)
            self.status_var.set(event.message)
        elif state is RunState.ERROR:
            self.progress.stop()
            self.progress.grid_remove()
            self.start_btn.config(state=tk.NORMAL)
            self.status_var.set(f"Download failed: {event.message}")

    def _on_close(self):
        # The worker holds the output lock and scratch files; let it finish
        if self._worker is not None and self._worker.is_alive():
            messagebox.showwarning("RFBR Loader",
                                   "A download is still running. Wait for it to finish before closing.")
            return
        self.destroy()

    # Settings persistence
    def _settings_path(self):
        return os.path.join(os.path.abspath('.'), '.rfbr_loader_gui.json')

    def _load_settings(self):
        path = self._settings_path()
        if not os.path.exists(path):
            return
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            self.url_var.set(data.get('reference', ''))
            self.pages_var.set(str(data.get('page_count') or ''))
            self.out_var.set(data.get('output_path', 'Book.pdf'))
            self.conc_var.set(int(data.get('concurrency', 8)))
        except (OSError, ValueError, TypeError, AttributeError):
            pass

    def _save_settings(self):
        data = {
            'reference': self.url_var.get().strip(),
            'page_count': self.pages_var.get().strip(),
            'output_path': self.out_var.get().strip() or 'Book.pdf',
            'concurrency': int(self.conc_var.get() or 8),
        }
        try:
            with open(self._settings_path(), 'w', encoding='utf-8') as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
        except OSError:
            pass


def main():
    initialize_logging()
    app = RfbrLoaderApp()
    app.mainloop()


if __name__ == "__main__":
    main()
