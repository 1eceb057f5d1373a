import threading

# PyMuPDF and pdfium keep process-wide state; only one thread drives them at a time.
pdf_engine_lock = threading.Lock()
