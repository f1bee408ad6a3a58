"""Domain errors raised by the catalog, roster, ledger and staff operations.

Controllers turn them into flash messages; ``message`` is the user-facing text.
"""

class LibraryError(Exception):
    message = "Ошибка библиотеки"

    def __init__(self, message: str | None = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)

class NotFound(LibraryError):
    message = "Запись не найдена"

class BookOnLoan(LibraryError):
    message = "Нельзя удалить книгу, которая находится на руках у читателей"

class ReaderHasBooks(LibraryError):
    message = "Нельзя удалить читателя, у которого есть книги на руках"

class DuplicateCard(LibraryError):
    message = "Читательский билет с таким номером уже существует"

class DuplicateLogin(LibraryError):
    message = "Пользователь с таким логином уже существует"

class BookUnavailable(LibraryError):
    message = "Книга уже выдана и ещё не возвращена"

class PermissionDenied(LibraryError):
    message = "Недостаточно прав"
