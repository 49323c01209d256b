from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.analytics.tracking import EventTracker, get_event_tracker
from app.board import Board, TodoFilters
from app.database import get_db
from app.dependencies import get_board, get_current_user
from app.models.user import User
from app.schemas.todo import ClearDeletedOut, MarkOut, TodoCreate, TodoOut, TodoUpdate
from app.services.todo_service import TodoService, completion_event

router = APIRouter()
service = TodoService()


@router.get("", response_model=list[TodoOut])
async def list_todos(
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    board: Board = Depends(get_board),
):
    filters = TodoFilters.from_query(request.query_params)
    todos = await service.board_view(db, board, filters)
    board.store(request.session)
    return todos


@router.post("", response_model=TodoOut, status_code=201)
async def create_todo(
    todo_in: TodoCreate,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    tracker: EventTracker = Depends(get_event_tracker),
):
    todo = await service.create_todo(db, todo_in, created_by_id=user.id)
    background_tasks.add_task(tracker.capture, user.id, "todo_created", {"tags": todo.tags})
    return todo


@router.get("/marked", response_model=list[str])
async def list_marked(board: Board = Depends(get_board), user: User = Depends(get_current_user)):
    return board.marked


@router.post("/clear-deleted", response_model=ClearDeletedOut)
async def clear_deleted(
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    board: Board = Depends(get_board),
    tracker: EventTracker = Depends(get_event_tracker),
):
    deleted = await service.clear_marked(db, board)
    board.store(request.session)
    if deleted:
        background_tasks.add_task(tracker.capture, user.id, "todo_deleted", {"count": deleted})
    return ClearDeletedOut(deleted=deleted)


@router.get("/{todo_id}", response_model=TodoOut)
async def get_todo(
    todo_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    board: Board = Depends(get_board),
):
    todo = await service.get_todo(db, todo_id)
    return TodoOut.model_validate(todo).model_copy(update={"marked_for_deletion": board.is_marked(todo.id)})


@router.put("/{todo_id}", response_model=TodoOut)
async def update_todo(
    todo_id: str,
    todo_in: TodoUpdate,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    tracker: EventTracker = Depends(get_event_tracker),
):
    was_completed = (await service.get_todo(db, todo_id)).completed
    todo = await service.update_todo(db, todo_id, todo_in)
    event = completion_event(was_completed, todo)
    background_tasks.add_task(tracker.capture, user.id, event, {"todo_id": todo.id})
    return todo


@router.delete("/{todo_id}")
async def delete_todo(
    todo_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    board: Board = Depends(get_board),
    tracker: EventTracker = Depends(get_event_tracker),
):
    await service.delete_todo(db, todo_id)
    board.forget([todo_id])
    board.store(request.session)
    background_tasks.add_task(tracker.capture, user.id, "todo_deleted", {"todo_id": todo_id})
    return {"success": True}


@router.post("/{todo_id}/mark", response_model=MarkOut)
async def toggle_mark(
    todo_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    board: Board = Depends(get_board),
):
    marked = await service.toggle_mark(db, board, todo_id)
    board.store(request.session)
    return MarkOut(id=todo_id, marked_for_deletion=marked)
