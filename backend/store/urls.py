from django.urls import path

from .views import TableListCreateView, TableDetailView, RpcView

urlpatterns = [
    path('rpc/<str:name>/', RpcView.as_view(), name='store-rpc'),
    path('<str:table>/', TableListCreateView.as_view(), name='store-table'),
    path('<str:table>/<int:pk>/', TableDetailView.as_view(), name='store-row'),
]
