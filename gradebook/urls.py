from django.urls import path
from . import views

app_name = 'gradebook'

urlpatterns = [
    path('curricula/', views.curricula, name='curricula'),

    # Report cards
    path('report-cards/', views.report_card_list, name='report_card_list'),
    path('report-cards/generate/', views.generate, name='generate'),
    path('report-cards/bulk-generate/', views.bulk_generate, name='bulk_generate'),
    path('report-cards/bulk-publish/', views.bulk_publish, name='bulk_publish'),
    path('report-cards/broadsheet/', views.download_broadsheet, name='broadsheet'),
    path('report-cards/<uuid:pk>/', views.report_card_detail, name='report_card_detail'),
    path('report-cards/<uuid:pk>/pdf/', views.download_pdf, name='report_card_pdf'),

    # Remarks
    path('report-cards/<uuid:pk>/comments/', views.update_comments, name='update_comments'),
    path('report-cards/<uuid:pk>/subjects/<int:subject_id>/comment/', views.update_subject_comment,
         name='update_subject_comment'),

    # Workflow
    path('report-cards/<uuid:pk>/submit/', views.submit_for_review, name='submit_for_review'),
    path('report-cards/<uuid:pk>/approve/', views.approve, name='approve'),
    path('report-cards/<uuid:pk>/publish/', views.publish, name='publish'),
    path('report-cards/<uuid:pk>/archive/', views.archive, name='archive'),
]
