from sievelab.db import init_db
from sievelab.logging_setup import configure_logging
from sievelab.ui.app import SieveLabApp


def main():
    configure_logging()
    init_db()
    app = SieveLabApp()
    app.mainloop()


if __name__ == "__main__":
    main()
